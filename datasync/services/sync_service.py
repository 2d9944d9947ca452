from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from datasync.config import (
    CURRENT_TABLE,
    PROVIDED_TABLE,
    RESULT_TABLE,
    ResultRecord,
    SchemaModel,
    SyncAction,
)
from datasync.core import DatabaseConnector, MetaDataQuerier
from datasync.errors import IntegrityError, RowDataError
from datasync.generator import EXCLUDED_CURRENT_TABLE, SqlBuilder, SyncSqlGenerator
from .filter_service import FilterService, FilterStatistics

logger = logging.getLogger(__name__)

# 行级错误在报告中保留的样例条数
ROW_ERROR_SAMPLE_SIZE = 5


@dataclass
class RowErrorSummary:
    """被跳过的不合法数据行的汇总。"""
    table: str
    total: int = 0
    skipped: int = 0
    sample: list[str] = field(default_factory=list)

    @property
    def error_rate(self) -> float:
        return round(self.skipped * 100.0 / self.total, 2) if self.total else 0.0


@dataclass(frozen=True)
class DuplicateKey:
    key: tuple
    count: int


@dataclass
class SyncReport:
    """
    一次同步处理的结果报告。

    Attributes:
        records (list[ResultRecord]): 按写入顺序排列的结果记录。
        counts (dict[SyncAction, int]): 各判定结果的记录数。
        filter_stats (dict[str, FilterStatistics]): 各输入表的过滤统计。
        row_errors (dict[str, RowErrorSummary]): 各输入表被跳过的行。
        duplicates (list[DuplicateKey]): 结果表中重复出现的键。
    """
    records: list[ResultRecord] = field(default_factory=list)
    counts: dict[SyncAction, int] = field(default_factory=dict)
    filter_stats: dict[str, FilterStatistics] = field(default_factory=dict)
    row_errors: dict[str, RowErrorSummary] = field(default_factory=dict)
    duplicates: list[DuplicateKey] = field(default_factory=list)
    key_columns: list[str] = field(default_factory=list)

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicates)

    def integrity_error(self) -> IntegrityError | None:
        """存在重复键时返回对应的 IntegrityError（不抛出）。"""
        if not self.duplicates:
            return None
        return IntegrityError(RESULT_TABLE, self.key_columns, [d.key for d in self.duplicates])


class SyncService:
    """
    同步服务，负责整个判定流程。

    处理顺序固定：行校验 -> 过滤 -> 重建表并装载 -> ADD -> UPDATE -> DELETE
    -> KEEP -> 重复检查。后面阶段的反连接条件依赖前面阶段已写入的结果，
    因此各阶段不能调换顺序；任一语句失败时抛出 StoreError 并中止后续阶段。
    """

    def __init__(
        self,
        config: SchemaModel,
        connector: DatabaseConnector,
        generator: SyncSqlGenerator | None = None,
        filter_service: FilterService | None = None
    ) -> None:
        """
        初始化同步服务。

        Args:
            config (SchemaModel): 经过完整校验的配置对象。
            connector (DatabaseConnector): 已连接的数据库连接器。
            generator (SyncSqlGenerator | None): SQL生成器，默认按连接器的方言创建。
            filter_service (FilterService | None): 行过滤服务。
        """
        self._config: SchemaModel = config
        self._connector: DatabaseConnector = connector
        self._querier: MetaDataQuerier = MetaDataQuerier(connector)
        self._generator: SyncSqlGenerator = generator or SyncSqlGenerator(config, SqlBuilder(connector.dialect))
        self._filter_service: FilterService = filter_service or FilterService(config)

    def run(self, provided_rows: list[dict[str, Any]], current_rows: list[dict[str, Any]]) -> SyncReport:
        """
        执行一次完整的同步判定。

        Args:
            provided_rows (list[dict[str, Any]]): 提供数据（同步的依据）。
            current_rows (list[dict[str, Any]]): 现有数据。

        Returns:
            SyncReport: 判定结果与统计信息。

        Raises:
            StoreError: 任何语句执行失败时抛出。
        """
        report = SyncReport(key_columns=self._config.key_columns(RESULT_TABLE))

        inputs = {PROVIDED_TABLE: provided_rows, CURRENT_TABLE: current_rows}
        kept: dict[str, list[dict[str, Any]]] = {}
        excluded_current: list[dict[str, Any]] = []
        for table_name, rows in inputs.items():
            valid_rows, errors = self.validate_rows(table_name, rows)
            report.row_errors[table_name] = errors
            filtered = self._filter_service.apply(table_name, valid_rows)
            report.filter_stats[table_name] = filtered.stats
            kept[table_name] = filtered.kept
            if table_name == CURRENT_TABLE:
                excluded_current = filtered.excluded

        self.prepare_store()
        self.load(PROVIDED_TABLE, kept[PROVIDED_TABLE])
        self.load(CURRENT_TABLE, kept[CURRENT_TABLE])
        if self._generator.uses_excluded_table:
            self.load(CURRENT_TABLE, excluded_current, target_table=EXCLUDED_CURRENT_TABLE)

        self.run_phases()

        report.duplicates = self.check_duplicates()
        counts = self._querier.count_by_value(RESULT_TABLE, self._config.sync_rules.action_column)
        report.counts = {action: counts.get(action.value, 0) for action in SyncAction}
        report.records = self.fetch_results()
        logger.info(
            "同步判定完成: ADD=%d, UPDATE=%d, DELETE=%d, KEEP=%d",
            *(report.counts[action] for action in SyncAction)
        )
        return report

    def validate_rows(
        self, table_name: str, rows: list[dict[str, Any]]
    ) -> tuple[list[dict[str, Any]], RowErrorSummary]:
        """
        检查必填字段，缺少必填值的行被跳过并计数，不中止处理。
        键字段总是必填：键为空的行无法关联，也无法参与结果表的重复检查。
        """
        keys = set(self._config.key_columns(table_name))
        required = [
            col.name for col in self._config.table(table_name).data_columns
            if col.required or col.name in keys
        ]
        summary = RowErrorSummary(table=table_name, total=len(rows))
        valid_rows = []
        for row_number, row in enumerate(rows, start=1):
            missing = [name for name in required if row.get(name) is None or str(row.get(name)).strip() == ""]
            if not missing:
                valid_rows.append(row)
                continue
            error = RowDataError(table_name, row_number, f"必填字段为空: {', '.join(missing)}")
            summary.skipped += 1
            if len(summary.sample) < ROW_ERROR_SAMPLE_SIZE:
                summary.sample.append(str(error))

        if summary.skipped:
            logger.warning(
                "%s: 跳过 %d/%d 行不合法数据 (%.2f%%)，例如: %s",
                table_name, summary.skipped, summary.total, summary.error_rate, summary.sample[0]
            )
        return valid_rows, summary

    def prepare_store(self) -> None:
        """删除并重建同步用的表。结果表每次都完全重建，不做增量合并。"""
        logger.info("重建同步用数据表...")
        self._connector.execute_script(self._generator.generate_setup())

    def load(self, table_name: str, rows: list[dict[str, Any]], target_table: str | None = None) -> None:
        target = target_table or table_name
        self._connector.execute_script(self._generator.generate_load(table_name, rows, target_table))
        logger.info("%s: 已装载 %d 行。", target, len(rows))

    def run_phases(self) -> None:
        """按 ADD -> UPDATE -> DELETE -> KEEP 的固定顺序执行四个判定阶段。"""
        for action in SyncAction:
            affected = self._connector.execute(self._generator.generate_phase(action))
            logger.info("%s 阶段: %d 行。", action.value, affected)

        if self._generator.uses_excluded_table:
            affected = self._connector.execute(self._generator.generate_excluded_keep())
            logger.info("KEEP 阶段 (被排除的现有数据): %d 行。", affected)

    def check_duplicates(self) -> list[DuplicateKey]:
        """
        检查结果表中同一个键是否出现多次。发现重复时只记录警告，不中止处理。
        """
        key_columns = self._config.key_columns(RESULT_TABLE)
        rows = self._connector.query(self._generator.generate_duplicate_check())
        duplicates = [
            DuplicateKey(key=tuple(row[k] for k in key_columns), count=int(row['dup_count']))
            for row in rows
        ]
        if duplicates:
            error = IntegrityError(RESULT_TABLE, key_columns, [d.key for d in duplicates])
            logger.warning("[%s] %s", error.category.value, error)
        return duplicates

    def fetch_results(self) -> list[ResultRecord]:
        action_column = self._config.sync_rules.action_column
        records = []
        for row in self._connector.query(self._generator.generate_result_query()):
            action = SyncAction(row.pop(action_column))
            records.append(ResultRecord(values=row, action=action))
        return records
