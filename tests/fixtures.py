import copy

# 测试用的最小配置：职员编号 employee_id (提供数据) 对应 user_id (现有数据)
BASE_DOCUMENT = {
    "tables": {
        "provided_data": {
            "columns": [
                {"name": "id", "type": "INTEGER", "constraints": "PRIMARY KEY AUTOINCREMENT"},
                {"name": "employee_id", "type": "TEXT", "required": True},
                {"name": "name", "type": "TEXT"},
                {"name": "dept", "type": "TEXT"},
            ]
        },
        "current_data": {
            "columns": [
                {"name": "id", "type": "INTEGER", "constraints": "PRIMARY KEY AUTOINCREMENT"},
                {"name": "user_id", "type": "TEXT", "required": True},
                {"name": "name", "type": "TEXT"},
                {"name": "dept", "type": "TEXT"},
            ]
        },
        "sync_result": {
            "columns": [
                {"name": "id", "type": "INTEGER", "constraints": "PRIMARY KEY AUTOINCREMENT"},
                {"name": "syokuin_no", "type": "TEXT"},
                {"name": "name", "type": "TEXT"},
                {"name": "dept", "type": "TEXT"},
                {"name": "sync_action", "type": "TEXT", "constraints": "NOT NULL"},
            ]
        },
    },
    "sync_rules": {
        "key_columns": {
            "provided_data": ["employee_id"],
            "current_data": ["user_id"],
            "sync_result": ["syokuin_no"],
        },
        "column_mappings": {
            "mappings": {"employee_id": "user_id", "name": "name", "dept": "dept"}
        },
        "sync_result_mapping": {
            "mappings": {
                "syokuin_no": {"sources": [
                    {"type": "provided_data", "field": "employee_id", "priority": 1},
                    {"type": "current_data", "field": "user_id", "priority": 2},
                ]},
                "name": {"sources": [
                    {"type": "provided_data", "field": "name", "priority": 1},
                    {"type": "current_data", "field": "name", "priority": 2},
                ]},
                "dept": {"sources": [
                    {"type": "provided_data", "field": "dept", "priority": 1},
                    {"type": "current_data", "field": "dept", "priority": 2},
                ]},
            }
        },
    },
}


def make_document():
    """返回一份可以随意修改的配置文档副本。"""
    return copy.deepcopy(BASE_DOCUMENT)
