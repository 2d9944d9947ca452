from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

PROVIDED_TABLE = "provided_data"
CURRENT_TABLE = "current_data"
RESULT_TABLE = "sync_result"
REQUIRED_TABLES = (PROVIDED_TABLE, CURRENT_TABLE, RESULT_TABLE)

# 由数据库自动生成的行ID字段
SURROGATE_ID_COLUMN = "id"


class SourceKind(str, Enum):
    """输出字段取值来源的类型。"""
    PROVIDED_DATA = "provided_data"
    CURRENT_DATA = "current_data"
    FIXED_VALUE = "fixed_value"


class ConstraintKind(str, Enum):
    UNIQUE = "UNIQUE"
    PRIMARY_KEY = "PRIMARY_KEY"
    FOREIGN_KEY = "FOREIGN_KEY"


class FilterKind(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class SyncAction(str, Enum):
    """记录的同步判定结果。"""
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    KEEP = "KEEP"


@dataclass(frozen=True)
class ColumnSpec:
    """
    表字段定义。

    Attributes:
        name (str): 字段名。
        data_type (str): 字段类型 (e.g., 'TEXT', 'DATE')。
        constraints (str): 列级约束 (e.g., 'NOT NULL')。
        csv_include (bool): 是否输出到结果CSV。
        required (bool): 输入数据中该字段是否必填。
        description (str): 字段说明。
    """
    name: str
    data_type: str
    constraints: str = ""
    csv_include: bool = True
    required: bool = False
    description: str = ""

    @property
    def is_surrogate(self) -> bool:
        return self.name == SURROGATE_ID_COLUMN


@dataclass(frozen=True)
class IndexSpec:
    name: str
    columns: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TableConstraint:
    """
    表级约束。FOREIGN_KEY 约束需要 ref_table 和 ref_columns。
    """
    name: str
    kind: ConstraintKind
    columns: list[str] = field(default_factory=list)
    ref_table: str = ""
    ref_columns: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TableSchema:
    """
    单张表的结构定义，字段顺序与配置文件一致。
    """
    name: str
    columns: list[ColumnSpec] = field(default_factory=list)
    indexes: list[IndexSpec] = field(default_factory=list)
    constraints: list[TableConstraint] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    @property
    def data_columns(self) -> list[ColumnSpec]:
        """除自增ID以外、需要从输入数据加载的字段。"""
        return [col for col in self.columns if not col.is_surrogate]

    def has_column(self, name: str) -> bool:
        return any(col.name == name for col in self.columns)

    def get_column(self, name: str) -> ColumnSpec:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(f"表 '{self.name}' 中不存在字段 '{name}'")


@dataclass(frozen=True)
class FilterRule:
    """
    行过滤规则。glob 与 value 二者必须且只能指定一个。
    """
    field: str
    kind: FilterKind
    glob: str | None = None
    value: str | None = None
    description: str = ""


@dataclass(frozen=True)
class TableFilter:
    """
    单张表的过滤配置。

    Attributes:
        enabled (bool): 是否启用过滤。
        rules (list[FilterRule]): 按声明顺序评估的规则列表。
        output_excluded_as_keep (bool): 被排除的现有数据是否作为 KEEP 输出。
    """
    enabled: bool = False
    rules: list[FilterRule] = field(default_factory=list)
    output_excluded_as_keep: bool = False

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.rules)


@dataclass(frozen=True)
class SourceSpec:
    """
    输出字段的一个取值来源。priority 越小优先级越高。
    """
    kind: SourceKind
    field: str | None = None
    value: Any = None
    priority: int = 1


@dataclass(frozen=True)
class OutputFieldSpec:
    """sync_result 中一个字段的取值规则，sources 已按优先级升序排列。"""
    field: str
    sources: list[SourceSpec] = field(default_factory=list)


@dataclass(frozen=True)
class CsvFormat:
    encoding: str = "utf-8"
    delimiter: str = ","
    has_header: bool = True
    include_header: bool = True
    null_values: list[str] = field(default_factory=lambda: ["", "NULL"])

    @property
    def null_token(self) -> str:
        """写出CSV时表示空值的字符串。"""
        return self.null_values[0] if self.null_values else ""


@dataclass(frozen=True)
class SyncRules:
    """
    同步规则：键字段、字段映射和结果字段的组成方式。

    Attributes:
        key_columns (dict[str, list[str]]): 每张表用于唯一识别记录的字段。
        column_mappings (dict[str, str]): provided_data 字段 -> current_data 字段。
        output_fields (list[OutputFieldSpec]): sync_result 各字段的取值来源。
        action_column (str): sync_result 中记录判定结果的字段。
        compare_columns (list[str] | None): 参与差异比较的 provided_data 字段，
            为 None 时使用全部映射字段（键字段除外）。
    """
    key_columns: dict[str, list[str]] = field(default_factory=dict)
    column_mappings: dict[str, str] = field(default_factory=dict)
    output_fields: list[OutputFieldSpec] = field(default_factory=list)
    action_column: str = "sync_action"
    compare_columns: list[str] | None = None


@dataclass(frozen=True)
class SchemaModel:
    """
    总配置模型，聚合表结构、同步规则、过滤规则与CSV格式。

    由 ConfigService 构建并完成校验后不再修改，作为参数传入各个组件。
    """
    tables: dict[str, TableSchema] = field(default_factory=dict)
    sync_rules: SyncRules = field(default_factory=SyncRules)
    data_filters: dict[str, TableFilter] = field(default_factory=dict)
    csv_formats: dict[str, CsvFormat] = field(default_factory=dict)

    def table(self, name: str) -> TableSchema:
        return self.tables[name]

    def key_columns(self, table_name: str) -> list[str]:
        return self.sync_rules.key_columns[table_name]

    def filter_for(self, table_name: str) -> TableFilter:
        return self.data_filters.get(table_name, TableFilter())

    def csv_format(self, name: str) -> CsvFormat:
        return self.csv_formats.get(name, CsvFormat())

    def compare_pairs(self) -> list[tuple[str, str]]:
        """
        获取参与差异比较的字段对 (provided字段, current字段)。
        """
        mappings = self.sync_rules.column_mappings
        provided_keys = set(self.key_columns(PROVIDED_TABLE))
        candidates = self.sync_rules.compare_columns
        if candidates is None:
            candidates = list(mappings)
        return [
            (col, mappings[col]) for col in candidates
            if col not in provided_keys and col != SURROGATE_ID_COLUMN
        ]

    def export_columns(self) -> list[str]:
        """结果CSV中输出的字段（自增ID默认不输出，判定字段始终输出）。"""
        result = self.table(RESULT_TABLE)
        action_column = self.sync_rules.action_column
        columns = [
            col.name for col in result.columns
            if col.csv_include and col.name != action_column
        ]
        return columns + [action_column]


@dataclass
class ResultRecord:
    """一条同步结果：各输出字段的最终取值以及判定结果。"""
    values: dict[str, Any]
    action: SyncAction
