from .sql_builder import CompareMode, SqlBuilder, escape_literal, quote_identifier
from .sync_sql_generator import SyncSqlGenerator, EXCLUDED_CURRENT_TABLE

__all__ = [
    "CompareMode",
    "SqlBuilder",
    "escape_literal",
    "quote_identifier",
    "SyncSqlGenerator",
    "EXCLUDED_CURRENT_TABLE",
]
