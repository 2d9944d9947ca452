from __future__ import annotations

import math
import re
from enum import Enum
from typing import Any, Iterable, Sequence

from datasync.config import ConstraintKind, TableSchema

SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")

SUPPORTED_DIALECTS = ("sqlite", "mysql")


class CompareMode(str, Enum):
    DIFFERENT = "DIFFERENT"
    SAME = "SAME"


def quote_identifier(name: str) -> str:
    """
    引用标识符。只由 [A-Za-z0-9_] 组成的名字原样返回，其他名字用反引号包裹，
    内部的反引号加倍。SQLite 和 MySQL 都支持反引号。
    """
    if not name:
        raise ValueError("标识符不能为空。")
    if SAFE_IDENTIFIER.match(name):
        return name
    return "`" + name.replace("`", "``") + "`"


def escape_literal(value: Any, dialect: str = "sqlite") -> str:
    """
    将Python值转换为可以直接嵌入SQL文本的字面量。

    Args:
        value (Any): 要转换的值。None 转为 NULL，布尔值转为 1/0，数值原样输出。
        dialect (str): 目标数据库方言。MySQL 默认把反斜杠当作转义符，需要一并加倍。

    Returns:
        str: SQL字面量文本。
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"无法转换为SQL字面量: {value}")
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value.value if isinstance(value, Enum) else value)
    if dialect == "mysql":
        text = text.replace("\\", "\\\\")
    return "'" + text.replace("'", "''") + "'"


def _column_pairs(columns: Iterable[str | tuple[str, str]]) -> list[tuple[str, str]]:
    pairs = []
    for col in columns:
        if isinstance(col, tuple):
            pairs.append(col)
        else:
            pairs.append((col, col))
    return pairs


class SqlBuilder:
    """
    SQL语句构建器。

    根据表结构定义生成建表、插入语句，以及差异比较、关联、分组、反连接
    等查询片段。所有嵌入的值与标识符都经过统一的转义处理。
    """

    def __init__(self, dialect: str = "sqlite") -> None:
        if dialect not in SUPPORTED_DIALECTS:
            raise ValueError(f"不支持的数据库方言: {dialect}")
        self._dialect: str = dialect

    @property
    def dialect(self) -> str:
        return self._dialect

    def literal(self, value: Any) -> str:
        return escape_literal(value, self._dialect)

    @staticmethod
    def qualified(alias: str | None, column: str) -> str:
        """生成带表别名的字段引用 (e.g., p.employee_id)。"""
        if alias:
            return f"{alias}.{quote_identifier(column)}"
        return quote_identifier(column)

    # --- DDL ---

    def create_table(self, schema: TableSchema, table_name: str | None = None, with_constraints: bool = True) -> str:
        """
        生成建表语句，字段顺序与配置一致。

        Args:
            schema (TableSchema): 表结构定义。
            table_name (str | None): 使用其他表名建表（例如暂存表），默认使用 schema.name。
            with_constraints (bool): 是否附加表级约束。

        Returns:
            str: CREATE TABLE 语句。
        """
        lines = []
        for col in schema.columns:
            parts = [quote_identifier(col.name), col.data_type]
            if col.constraints:
                parts.append(col.constraints)
            lines.append("    " + " ".join(parts))

        if with_constraints:
            for constraint in schema.constraints:
                lines.append("    " + self._constraint_definition(constraint))

        name = quote_identifier(table_name or schema.name)
        return f"CREATE TABLE {name} (\n" + ",\n".join(lines) + "\n);"

    def _constraint_definition(self, constraint) -> str:
        cols = ", ".join(quote_identifier(c) for c in constraint.columns)
        prefix = f"CONSTRAINT {quote_identifier(constraint.name)} " if constraint.name else ""
        if constraint.kind is ConstraintKind.UNIQUE:
            return f"{prefix}UNIQUE ({cols})"
        if constraint.kind is ConstraintKind.PRIMARY_KEY:
            return f"{prefix}PRIMARY KEY ({cols})"
        ref_cols = ", ".join(quote_identifier(c) for c in constraint.ref_columns)
        return f"{prefix}FOREIGN KEY ({cols}) REFERENCES {quote_identifier(constraint.ref_table)} ({ref_cols})"

    @staticmethod
    def drop_table(table_name: str) -> str:
        return f"DROP TABLE IF EXISTS {quote_identifier(table_name)};"

    @staticmethod
    def create_indexes(schema: TableSchema) -> list[str]:
        return [
            f"CREATE INDEX {quote_identifier(index.name)} ON {quote_identifier(schema.name)} "
            f"({', '.join(quote_identifier(c) for c in index.columns)});"
            for index in schema.indexes
        ]

    # --- DML ---

    def insert_rows(
        self,
        table_name: str,
        columns: Sequence[str],
        rows: Iterable[dict[str, Any]],
        batch_size: int = 500
    ) -> list[str]:
        """
        生成批量插入语句，每条语句最多包含 batch_size 行。
        行中缺少的字段按 NULL 插入。
        """
        if batch_size < 1:
            raise ValueError("batch_size 必须大于 0。")
        header = (
            f"INSERT INTO {quote_identifier(table_name)} "
            f"({', '.join(quote_identifier(c) for c in columns)}) VALUES\n"
        )
        statements = []
        batch: list[str] = []
        for row in rows:
            values = ", ".join(self.literal(row.get(col)) for col in columns)
            batch.append(f"    ({values})")
            if len(batch) >= batch_size:
                statements.append(header + ",\n".join(batch) + ";")
                batch = []
        if batch:
            statements.append(header + ",\n".join(batch) + ";")
        return statements

    # --- 查询片段 ---

    def comparison_predicate(
        self,
        left_alias: str,
        right_alias: str,
        columns: Iterable[str | tuple[str, str]],
        mode: CompareMode
    ) -> str:
        """
        生成空值安全的比较条件。

        DIFFERENT: 任一字段不同即为真（一侧为 NULL 另一侧非 NULL 也算不同），用 OR 连接。
        SAME: 所有字段都相同才为真（两侧都为 NULL 视为相同），用 AND 连接。

        Args:
            left_alias (str): 左表别名。
            right_alias (str): 右表别名。
            columns: 字段名，或 (左表字段, 右表字段) 组成的字段对。
            mode (CompareMode): 比较模式。

        Returns:
            str: WHERE 条件片段。字段为空时返回恒假 (DIFFERENT) 或恒真 (SAME) 条件。
        """
        terms = []
        for left_col, right_col in _column_pairs(columns):
            left = self.qualified(left_alias, left_col)
            right = self.qualified(right_alias, right_col)
            if mode is CompareMode.DIFFERENT:
                terms.append(
                    f"({left} <> {right}"
                    f" OR ({left} IS NULL AND {right} IS NOT NULL)"
                    f" OR ({left} IS NOT NULL AND {right} IS NULL))"
                )
            else:
                terms.append(f"({left} = {right} OR ({left} IS NULL AND {right} IS NULL))")

        if not terms:
            return "1 = 0" if mode is CompareMode.DIFFERENT else "1 = 1"
        joiner = "\n   OR " if mode is CompareMode.DIFFERENT else "\n  AND "
        return "(" + joiner.join(terms) + ")"

    def join_predicate(
        self,
        left_alias: str,
        right_alias: str,
        key_columns: Sequence[str],
        mapping: dict[str, str] | None = None
    ) -> str:
        """
        生成关联条件。右侧字段名优先使用字段映射，没有映射时使用同名字段。
        """
        mapping = mapping or {}
        return " AND ".join(
            f"{self.qualified(left_alias, key)} = {self.qualified(right_alias, mapping.get(key, key))}"
            for key in key_columns
        )

    def group_by_clause(self, key_columns: Sequence[str], alias: str | None = None) -> str:
        return ", ".join(self.qualified(alias, key) for key in key_columns)

    @staticmethod
    def anti_join_condition(columns: Sequence[str], subquery: str) -> str:
        """生成 (cols) NOT IN (subquery) 形式的反连接条件，columns 为已引用的表达式。"""
        return f"({', '.join(columns)}) NOT IN ({subquery})"

    def duplicate_check(self, table_name: str, key_columns: Sequence[str]) -> str:
        """生成检查键字段重复的查询。"""
        keys = self.group_by_clause(key_columns)
        return (
            f"SELECT {keys}, COUNT(*) AS dup_count\n"
            f"FROM {quote_identifier(table_name)}\n"
            f"GROUP BY {keys}\n"
            f"HAVING COUNT(*) > 1;"
        )

    @staticmethod
    def coalesce(expressions: Sequence[str]) -> str:
        """按顺序取第一个非 NULL 的表达式。SQLite 的 COALESCE 至少需要两个参数。"""
        if not expressions:
            return "NULL"
        if len(expressions) == 1:
            return expressions[0]
        return f"COALESCE({', '.join(expressions)})"
