from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """错误分类，对应运维侧看到的错误类别。"""
    CONFIG = "CONFIG"
    SYSTEM = "SYSTEM"
    DATA = "DATA"
    IO = "IO"


class SyncError(Exception):
    """
    同步处理中所有异常的基类。

    Attributes:
        category (ErrorCategory): 错误分类。
    """
    category: ErrorCategory = ErrorCategory.SYSTEM


class ValidationError(SyncError, ValueError):
    """
    配置校验失败。

    Attributes:
        section (str): 出错的配置路径 (e.g., 'sync_rules.key_columns.provided_data')。
        reason (str): 失败原因。
    """
    category = ErrorCategory.CONFIG

    def __init__(self, section: str, reason: str) -> None:
        self.section: str = section
        self.reason: str = reason
        super().__init__(f"配置校验失败 [{section}]: {reason}")


class IntegrityError(SyncError):
    """同步结果中存在重复的键值组合。"""
    category = ErrorCategory.SYSTEM

    def __init__(self, table: str, key_columns: list[str], duplicates: list[tuple]) -> None:
        self.table: str = table
        self.key_columns: list[str] = list(key_columns)
        self.duplicates: list[tuple] = list(duplicates)
        keys = ", ".join(str(d) for d in self.duplicates)
        super().__init__(
            f"表 '{table}' 的键 ({', '.join(self.key_columns)}) 存在重复: {keys}"
        )


class RowDataError(SyncError):
    """单行数据不合法（例如必填字段为空），该行会被跳过。"""
    category = ErrorCategory.DATA

    def __init__(self, table: str, row_number: int, reason: str) -> None:
        self.table: str = table
        self.row_number: int = row_number
        self.reason: str = reason
        super().__init__(f"{table} 第 {row_number} 行: {reason}")


class StoreError(SyncError):
    """在外部数据库上执行语句失败。"""
    category = ErrorCategory.IO

    def __init__(self, message: str, statement: str | None = None) -> None:
        self.statement: str | None = statement
        super().__init__(message)
