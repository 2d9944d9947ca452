import json
import os
import tempfile
import unittest

from datasync.config import ConstraintKind, FilterKind, SourceKind
from datasync.errors import ErrorCategory, ValidationError
from datasync.services import ConfigService
from tests.fixtures import make_document


class TestConfigService(unittest.TestCase):
    """
    针对 ConfigService 的单元测试套件。
    """

    def setUp(self):
        self.document = make_document()
        self.config_service = ConfigService()

    def assertValidationError(self, section):
        """断言加载配置时抛出指定路径的 ValidationError。"""
        with self.assertRaises(ValidationError) as context:
            self.config_service.load(self.document)
        self.assertEqual(context.exception.section, section)
        return context.exception

    def test_load_success(self):
        """
        测试：合法配置应成功构建 SchemaModel。
        """
        config = self.config_service.load(self.document)

        self.assertEqual(config.key_columns("provided_data"), ["employee_id"])
        self.assertEqual(config.sync_rules.column_mappings["employee_id"], "user_id")
        self.assertEqual(config.sync_rules.action_column, "sync_action")
        self.assertEqual(config.table("sync_result").column_names[0], "id")

    def test_each_load_returns_independent_config(self):
        """
        测试：同一个服务多次加载时，每次返回各自的配置对象，互不影响。
        """
        first = self.config_service.load(self.document)
        other = make_document()
        other["sync_rules"]["compare_columns"] = ["dept"]
        second = self.config_service.load(other)

        self.assertIsNot(first, second)
        self.assertIsNone(first.sync_rules.compare_columns)
        self.assertEqual(second.sync_rules.compare_columns, ["dept"])

    def test_surrogate_id_not_exported_by_default(self):
        config = self.config_service.load(self.document)
        self.assertFalse(config.table("sync_result").get_column("id").csv_include)
        self.assertEqual(config.export_columns(), ["syokuin_no", "name", "dept", "sync_action"])

    def test_compare_pairs_exclude_key_columns(self):
        config = self.config_service.load(self.document)
        self.assertEqual(config.compare_pairs(), [("name", "name"), ("dept", "dept")])

    def test_compare_columns_narrow_comparison(self):
        self.document["sync_rules"]["compare_columns"] = ["dept"]
        config = self.config_service.load(self.document)
        self.assertEqual(config.compare_pairs(), [("dept", "dept")])

    def test_table_without_columns(self):
        """
        测试：表没有声明字段时应失败，并指出配置路径。
        """
        self.document["tables"]["current_data"]["columns"] = []
        self.assertValidationError("tables.current_data.columns")

    def test_duplicate_column_name(self):
        self.document["tables"]["provided_data"]["columns"].append({"name": "dept", "type": "TEXT"})
        self.assertValidationError("tables.provided_data.columns[4].name")

    def test_missing_required_table(self):
        """
        测试：缺少 sync_result 表时应失败。
        """
        del self.document["tables"]["sync_result"]
        error = self.assertValidationError("tables")
        self.assertIn("sync_result", error.reason)
        self.assertEqual(error.category, ErrorCategory.CONFIG)

    def test_mapping_key_not_in_provided_table(self):
        self.document["sync_rules"]["column_mappings"]["mappings"]["unknown"] = "name"
        self.assertValidationError("sync_rules.column_mappings.mappings.unknown")

    def test_mapping_value_not_in_current_table(self):
        self.document["sync_rules"]["column_mappings"]["mappings"]["dept"] = "division"
        error = self.assertValidationError("sync_rules.column_mappings.mappings.dept")
        self.assertIn("division", error.reason)

    def test_key_column_not_declared(self):
        self.document["sync_rules"]["key_columns"]["current_data"] = ["user_no"]
        self.assertValidationError("sync_rules.key_columns.current_data")

    def test_key_columns_required_for_every_table(self):
        del self.document["sync_rules"]["key_columns"]["sync_result"]
        self.assertValidationError("sync_rules.key_columns")

    def test_surrogate_id_cannot_be_key(self):
        self.document["sync_rules"]["key_columns"]["provided_data"] = ["id"]
        self.assertValidationError("sync_rules.key_columns.provided_data")

    def test_key_without_counterpart_in_current_table(self):
        """
        测试：提供数据的键在现有数据中既没有映射也没有同名字段时应失败。
        """
        del self.document["sync_rules"]["column_mappings"]["mappings"]["employee_id"]
        self.assertValidationError("sync_rules.column_mappings.mappings.employee_id")

    def test_validation_order_mapping_before_keys(self):
        """
        测试：字段映射错误与键字段错误同时存在时，先报告字段映射错误。
        """
        self.document["sync_rules"]["column_mappings"]["mappings"]["dept"] = "division"
        self.document["sync_rules"]["key_columns"]["current_data"] = ["user_no"]
        self.assertValidationError("sync_rules.column_mappings.mappings.dept")

    def test_filter_rules_parsed(self):
        self.document["data_filters"] = {
            "provided_data": {
                "enabled": True,
                "rules": [
                    {"field": "employee_id", "type": "exclude", "glob": "Z*", "description": "测试账号"},
                    {"field": "dept", "type": "include", "value": 10},
                ],
            }
        }
        config = self.config_service.load(self.document)
        table_filter = config.filter_for("provided_data")

        self.assertTrue(table_filter.is_active)
        self.assertEqual(table_filter.rules[0].kind, FilterKind.EXCLUDE)
        self.assertEqual(table_filter.rules[0].glob, "Z*")
        self.assertEqual(table_filter.rules[1].value, "10")
        self.assertFalse(config.filter_for("current_data").is_active)

    def test_filter_rule_unknown_field(self):
        self.document["data_filters"] = {
            "current_data": {"enabled": True, "rules": [{"field": "employee_id", "type": "exclude", "glob": "Z*"}]}
        }
        self.assertValidationError("data_filters.current_data.rules[0].field")

    def test_filter_rule_glob_and_value_both_present(self):
        self.document["data_filters"] = {
            "provided_data": {"enabled": True, "rules": [
                {"field": "dept", "type": "exclude", "glob": "Z*", "value": "Z"}
            ]}
        }
        self.assertValidationError("data_filters.provided_data.rules[0]")

    def test_filter_rule_unknown_type(self):
        self.document["data_filters"] = {
            "provided_data": {"enabled": True, "rules": [{"field": "dept", "type": "drop", "glob": "Z*"}]}
        }
        self.assertValidationError("data_filters.provided_data.rules[0].type")

    def test_excluded_as_keep_only_for_current_data(self):
        self.document["data_filters"] = {
            "provided_data": {"enabled": True, "output_excluded_as_keep": True, "rules": []},
            "current_data": {"enabled": True, "output_excluded_as_keep": True, "rules": []},
        }
        config = self.config_service.load(self.document)
        self.assertFalse(config.filter_for("provided_data").output_excluded_as_keep)
        self.assertTrue(config.filter_for("current_data").output_excluded_as_keep)

    def test_sources_sorted_by_priority(self):
        """
        测试：取值来源按优先级升序排列，与声明顺序无关。
        """
        self.document["sync_rules"]["sync_result_mapping"]["mappings"]["dept"]["sources"] = [
            {"type": "fixed_value", "value": "未所属", "priority": 9},
            {"type": "current_data", "field": "dept", "priority": 2},
            {"type": "provided_data", "field": "dept", "priority": 1},
        ]
        config = self.config_service.load(self.document)
        dept = [spec for spec in config.sync_rules.output_fields if spec.field == "dept"][0]

        self.assertEqual(
            [s.kind for s in dept.sources],
            [SourceKind.PROVIDED_DATA, SourceKind.CURRENT_DATA, SourceKind.FIXED_VALUE]
        )
        self.assertEqual(dept.sources[2].value, "未所属")

    def test_source_field_not_declared(self):
        self.document["sync_rules"]["sync_result_mapping"]["mappings"]["name"]["sources"][1]["field"] = "full_name"
        self.assertValidationError("sync_rules.sync_result_mapping.mappings.name.sources[1].field")

    def test_fixed_value_source_requires_value(self):
        """
        测试：固定值来源的 value 为 null 或缺失时应失败，否则低优先级的来源永远不会被使用。
        """
        sources = self.document["sync_rules"]["sync_result_mapping"]["mappings"]["dept"]["sources"]
        sources[0] = {"type": "fixed_value", "value": None, "priority": 1}
        self.assertValidationError("sync_rules.sync_result_mapping.mappings.dept.sources[0].value")

        sources[0] = {"type": "fixed_value", "priority": 1}
        self.assertValidationError("sync_rules.sync_result_mapping.mappings.dept.sources[0].value")

    def test_duplicate_priority(self):
        self.document["sync_rules"]["sync_result_mapping"]["mappings"]["name"]["sources"][1]["priority"] = 1
        self.assertValidationError("sync_rules.sync_result_mapping.mappings.name.sources[1].priority")

    def test_output_field_requires_source(self):
        self.document["sync_rules"]["sync_result_mapping"]["mappings"]["name"]["sources"] = []
        self.assertValidationError("sync_rules.sync_result_mapping.mappings.name.sources")

    def test_output_field_not_in_result_table(self):
        self.document["sync_rules"]["sync_result_mapping"]["mappings"]["memo"] = {
            "sources": [{"type": "fixed_value", "value": "x"}]
        }
        self.assertValidationError("sync_rules.sync_result_mapping.mappings.memo")

    def test_result_key_requires_source(self):
        del self.document["sync_rules"]["sync_result_mapping"]["mappings"]["syokuin_no"]
        self.assertValidationError("sync_rules.sync_result_mapping.mappings.syokuin_no")

    def test_action_column_must_exist(self):
        self.document["sync_rules"]["sync_result_mapping"]["action_column"] = "status"
        self.assertValidationError("sync_rules.sync_result_mapping.action_column")

    def test_table_constraints_and_indexes(self):
        self.document["tables"]["provided_data"]["table_constraints"] = [
            {"name": "uq_employee", "type": "UNIQUE", "columns": ["employee_id"]},
            {"name": "fk_dept", "type": "FOREIGN KEY", "columns": ["dept"],
             "references": {"table": "current_data", "columns": ["dept"]}},
        ]
        self.document["tables"]["provided_data"]["indexes"] = [
            {"name": "idx_employee", "columns": ["employee_id"]}
        ]
        config = self.config_service.load(self.document)
        schema = config.table("provided_data")

        self.assertEqual(schema.constraints[0].kind, ConstraintKind.UNIQUE)
        self.assertEqual(schema.constraints[1].kind, ConstraintKind.FOREIGN_KEY)
        self.assertEqual(schema.constraints[1].ref_table, "current_data")
        self.assertEqual(schema.indexes[0].columns, ["employee_id"])

    def test_unknown_constraint_type(self):
        self.document["tables"]["sync_result"]["table_constraints"] = [
            {"name": "ck", "type": "CHECK", "columns": ["name"]}
        ]
        self.assertValidationError("tables.sync_result.table_constraints[0].type")

    def test_constraint_column_not_declared(self):
        self.document["tables"]["sync_result"]["table_constraints"] = [
            {"name": "uq", "type": "UNIQUE", "columns": ["employee_id"]}
        ]
        self.assertValidationError("tables.sync_result.table_constraints[0].columns")

    def test_csv_format(self):
        self.document["csv_format"] = {
            "provided_data": {"encoding": "cp932", "delimiter": "\t", "has_header": False, "null_values": ["NULL"]}
        }
        config = self.config_service.load(self.document)
        fmt = config.csv_format("provided_data")

        self.assertEqual(fmt.encoding, "cp932")
        self.assertEqual(fmt.delimiter, "\t")
        self.assertFalse(fmt.has_header)
        self.assertEqual(fmt.null_values, ["NULL"])
        self.assertEqual(config.csv_format("output").null_token, "")

    def test_load_file_invalid_json(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "config.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("{not json")
            with self.assertRaises(ValidationError) as context:
                self.config_service.load_file(path)
        self.assertEqual(context.exception.section, path)

    def test_load_file_success(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "config.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.document, f, ensure_ascii=False)
            config = self.config_service.load_file(path)
        self.assertIn("sync_result", config.tables)


if __name__ == '__main__':
    unittest.main()
