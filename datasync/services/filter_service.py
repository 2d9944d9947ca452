from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from datasync.config import FilterKind, FilterRule, SchemaModel

logger = logging.getLogger(__name__)

_WILDCARD_CHARS = set("*?[")


@dataclass(frozen=True)
class FilterStatistics:
    """
    过滤统计信息。

    Attributes:
        total (int): 输入行数。
        kept (int): 保留行数。
        excluded (int): 排除行数。
        exclusion_rate (float): 排除率（百分比，保留两位小数）。
    """
    total: int = 0
    kept: int = 0
    excluded: int = 0
    exclusion_rate: float = 0.0

    @classmethod
    def of(cls, kept: int, excluded: int) -> FilterStatistics:
        total = kept + excluded
        rate = round(excluded * 100.0 / total, 2) if total else 0.0
        return cls(total=total, kept=kept, excluded=excluded, exclusion_rate=rate)


@dataclass
class FilterResult:
    kept: list[dict[str, Any]] = field(default_factory=list)
    excluded: list[dict[str, Any]] = field(default_factory=list)
    stats: FilterStatistics = field(default_factory=FilterStatistics)


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern:
    return re.compile(fnmatch.translate(pattern))


def glob_match(value: str, pattern: str) -> bool:
    """
    判断值是否与glob模式完整匹配（区分大小写）。

    支持 '*'（任意个字符）、'?'（单个字符）、'[abc]'、'[!abc]'。
    不含通配符的模式按完全一致比较。
    """
    if not _WILDCARD_CHARS.intersection(pattern):
        return value == pattern
    return _compile_glob(pattern).match(value) is not None


class FilterService:
    """
    行过滤服务，按配置中每张表的规则决定哪些行参与同步。
    """

    def __init__(self, config: SchemaModel) -> None:
        """
        Args:
            config (SchemaModel): 经过校验的配置对象。
        """
        self._config: SchemaModel = config

    def apply(self, table_name: str, rows: list[dict[str, Any]]) -> FilterResult:
        """
        对指定表的数据行应用过滤规则。

        规则按声明顺序评估，命中 exclude 规则或不满足 include 规则的行被排除，
        后续规则不再评估。字段值为空时跳过该规则。

        Args:
            table_name (str): 表名。
            rows (list[dict[str, Any]]): 输入数据行，不会被修改。

        Returns:
            FilterResult: 保留行、排除行与统计信息。
        """
        table_filter = self._config.filter_for(table_name)
        if not table_filter.is_active:
            return FilterResult(kept=list(rows), excluded=[], stats=FilterStatistics.of(len(rows), 0))

        result = FilterResult()
        for row in rows:
            rule = self._find_excluding_rule(row, table_filter.rules)
            if rule is None:
                result.kept.append(row)
            else:
                logger.debug("%s: 行被规则排除 (%s): %s", table_name, rule.description or rule.field, row.get(rule.field))
                result.excluded.append(row)

        result.stats = FilterStatistics.of(len(result.kept), len(result.excluded))
        logger.info(
            "%s 过滤完成: 共 %d 行, 保留 %d 行, 排除 %d 行 (%.2f%%)",
            table_name, result.stats.total, result.stats.kept,
            result.stats.excluded, result.stats.exclusion_rate
        )
        return result

    def _find_excluding_rule(self, row: dict[str, Any], rules: list[FilterRule]) -> FilterRule | None:
        """返回导致该行被排除的第一条规则，没有则返回 None。"""
        for rule in rules:
            value = row.get(rule.field)
            if value is None or value == "":
                continue
            matched = self._matches(str(value), rule)
            if rule.kind is FilterKind.EXCLUDE and matched:
                return rule
            if rule.kind is FilterKind.INCLUDE and not matched:
                return rule
        return None

    @staticmethod
    def _matches(value: str, rule: FilterRule) -> bool:
        if rule.glob is not None:
            return glob_match(value, rule.glob)
        return value == rule.value
