from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Iterable

import pymysql
from pymysql.connections import Connection
from pymysql.cursors import DictCursor
from pymysql.err import Error

from datasync.errors import StoreError

logger = logging.getLogger(__name__)


def _preview(statement: str, limit: int = 200) -> str:
    text = " ".join(statement.split())
    return text if len(text) <= limit else text[:limit] + "..."


class DatabaseConnector(ABC):
    """
    数据库连接器基类。

    同步处理只依赖 execute / query 两个同步接口；每条语句只执行一次，
    执行失败时抛出 StoreError，是否重试由调用方决定。
    """

    dialect: str = ""

    @abstractmethod
    def connect(self) -> None:
        """建立连接，失败时抛出 StoreError。"""

    @abstractmethod
    def disconnect(self) -> None:
        """关闭连接。"""

    @abstractmethod
    def is_connected(self) -> bool:
        """检查当前是否存在有效的数据库连接。"""

    @abstractmethod
    def execute(self, statement: str) -> int:
        """
        执行一条不返回结果集的语句并提交。

        Returns:
            int: 受影响的行数。
        """

    @abstractmethod
    def query(self, statement: str) -> list[dict[str, Any]]:
        """执行查询并以 字段名->值 的字典列表返回结果。"""

    def get_db_name(self) -> str | None:
        return None

    def execute_script(self, statements: Iterable[str]) -> int:
        """
        按顺序逐条执行多条语句，任一条失败即停止并抛出 StoreError。

        Returns:
            int: 所有语句受影响行数之和。
        """
        total = 0
        for statement in statements:
            total += self.execute(statement)
        return total

    def __enter__(self) -> DatabaseConnector:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()


class MySQLConnector(DatabaseConnector):
    """
    MySQL 数据库连接器（使用PyMySQL）。
    """

    dialect = "mysql"

    def __init__(self, db_config: dict[str, Any]) -> None:
        """
        初始化数据库连接器。
        Args:
            db_config (dict[str, Any]): 数据库连接配置 (host, port, user, password, database)。
        """
        self._connection_config: dict[str, Any] = db_config
        self._connection: Connection | None = None

    def connect(self) -> None:
        if self.is_connected():
            self.disconnect()

        # port 需要是整数
        config = self._connection_config.copy()
        config['port'] = int(config.get('port', 3306))
        config.setdefault('charset', 'utf8mb4')
        try:
            self._connection = pymysql.connect(**config)
        except Error as e:
            self._connection = None
            raise StoreError(f"数据库连接失败: {e}") from e
        logger.info("数据库连接成功 (MySQL %s:%s/%s)。", config.get('host'), config['port'], config.get('database'))

    def disconnect(self) -> None:
        if self._connection:
            self._connection.close()
            logger.info("数据库连接已关闭。")
        self._connection = None

    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.open

    def get_db_name(self) -> str | None:
        return self._connection_config.get('database')

    def _require_connection(self) -> Connection:
        if not self.is_connected():
            raise StoreError("数据库未连接。")
        return self._connection

    def execute(self, statement: str) -> int:
        connection = self._require_connection()
        cursor = connection.cursor()
        try:
            affected = cursor.execute(statement)
            connection.commit()
            return affected
        except Error as e:
            connection.rollback()
            raise StoreError(f"语句执行失败: {e} [{_preview(statement)}]", statement) from e
        finally:
            cursor.close()

    def query(self, statement: str) -> list[dict[str, Any]]:
        connection = self._require_connection()
        cursor = connection.cursor(DictCursor)
        try:
            cursor.execute(statement)
            return list(cursor.fetchall())
        except Error as e:
            raise StoreError(f"查询失败: {e} [{_preview(statement)}]", statement) from e
        finally:
            cursor.close()


class SQLiteConnector(DatabaseConnector):
    """
    SQLite 数据库连接器。默认使用内存数据库，每条语句自动提交。
    """

    dialect = "sqlite"

    def __init__(self, database: str = ":memory:") -> None:
        self._database: str = database
        self._connection: sqlite3.Connection | None = None

    def connect(self) -> None:
        if self.is_connected():
            self.disconnect()
        try:
            self._connection = sqlite3.connect(self._database, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreError(f"数据库连接失败: {e}") from e
        self._connection.row_factory = sqlite3.Row
        logger.info("数据库连接成功 (SQLite %s)。", self._database)

    def disconnect(self) -> None:
        if self._connection is not None:
            self._connection.close()
            logger.info("数据库连接已关闭。")
        self._connection = None

    def is_connected(self) -> bool:
        return self._connection is not None

    def get_db_name(self) -> str | None:
        return self._database

    def _require_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StoreError("数据库未连接。")
        return self._connection

    def execute(self, statement: str) -> int:
        connection = self._require_connection()
        try:
            cursor = connection.execute(statement)
        except sqlite3.Error as e:
            raise StoreError(f"语句执行失败: {e} [{_preview(statement)}]", statement) from e
        return max(cursor.rowcount, 0)

    def query(self, statement: str) -> list[dict[str, Any]]:
        connection = self._require_connection()
        try:
            rows = connection.execute(statement).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"查询失败: {e} [{_preview(statement)}]", statement) from e
        return [dict(row) for row in rows]
