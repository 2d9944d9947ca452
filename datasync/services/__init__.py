from .config_service import ConfigService
from .filter_service import FilterResult, FilterService, FilterStatistics, glob_match
from .sync_service import DuplicateKey, RowErrorSummary, SyncReport, SyncService

__all__ = [
    "ConfigService",
    "FilterResult",
    "FilterService",
    "FilterStatistics",
    "glob_match",
    "DuplicateKey",
    "RowErrorSummary",
    "SyncReport",
    "SyncService",
]
