from __future__ import annotations

from .db_connector import DatabaseConnector
from datasync.generator.sql_builder import quote_identifier


class MetaDataQuerier:
    """
    元数据查询器，负责查询同步用数据库中的表和行数统计。
    """

    def __init__(self, db_connector: DatabaseConnector) -> None:
        """
        初始化元数据查询器。

        Args:
            db_connector (DatabaseConnector): 一个有效的数据库连接器实例。
        """
        self._db_connector: DatabaseConnector = db_connector

    def get_db_name(self) -> str | None:
        """获取查询器关联的数据库名称"""
        return self._db_connector.get_db_name()

    def get_all_tables(self) -> list[str]:
        """
        获取当前数据库中的所有表名。

        Returns:
            list[str]: 按名称排序的表名列表。
        """
        if self._db_connector.dialect == "mysql":
            rows = self._db_connector.query(
                "SELECT table_name AS name FROM information_schema.tables "
                "WHERE table_schema = DATABASE() ORDER BY table_name;"
            )
        else:
            rows = self._db_connector.query(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name;"
            )
        return [row.get('name', row.get('NAME')) for row in rows]

    def count_rows(self, table_name: str) -> int:
        """获取指定表的行数。"""
        rows = self._db_connector.query(f"SELECT COUNT(*) AS cnt FROM {quote_identifier(table_name)};")
        return int(rows[0]['cnt']) if rows else 0

    def count_by_value(self, table_name: str, column: str) -> dict[str, int]:
        """
        按字段值分组统计行数。

        Args:
            table_name (str): 表名。
            column (str): 分组字段。

        Returns:
            dict[str, int]: 字段值 -> 行数。
        """
        col = quote_identifier(column)
        rows = self._db_connector.query(
            f"SELECT {col} AS value, COUNT(*) AS cnt FROM {quote_identifier(table_name)} GROUP BY {col};"
        )
        return {str(row['value']): int(row['cnt']) for row in rows}
