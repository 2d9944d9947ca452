from .models import (
    PROVIDED_TABLE,
    CURRENT_TABLE,
    RESULT_TABLE,
    REQUIRED_TABLES,
    SURROGATE_ID_COLUMN,
    SourceKind,
    ConstraintKind,
    FilterKind,
    SyncAction,
    ColumnSpec,
    IndexSpec,
    TableConstraint,
    TableSchema,
    FilterRule,
    TableFilter,
    SourceSpec,
    OutputFieldSpec,
    CsvFormat,
    SyncRules,
    SchemaModel,
    ResultRecord,
)

__all__ = [
    "PROVIDED_TABLE",
    "CURRENT_TABLE",
    "RESULT_TABLE",
    "REQUIRED_TABLES",
    "SURROGATE_ID_COLUMN",
    "SourceKind",
    "ConstraintKind",
    "FilterKind",
    "SyncAction",
    "ColumnSpec",
    "IndexSpec",
    "TableConstraint",
    "TableSchema",
    "FilterRule",
    "TableFilter",
    "SourceSpec",
    "OutputFieldSpec",
    "CsvFormat",
    "SyncRules",
    "SchemaModel",
    "ResultRecord",
]
