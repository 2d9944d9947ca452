from __future__ import annotations

import datetime
from typing import Any, Iterable

from datasync.config import (
    CURRENT_TABLE,
    PROVIDED_TABLE,
    RESULT_TABLE,
    SURROGATE_ID_COLUMN,
    OutputFieldSpec,
    SchemaModel,
    SourceKind,
    SyncAction,
)
from .sql_builder import CompareMode, SqlBuilder, quote_identifier

PROVIDED_ALIAS = "p"
CURRENT_ALIAS = "c"

# 被过滤规则排除、但需要作为 KEEP 输出的现有数据暂存表
EXCLUDED_CURRENT_TABLE = "current_data_excluded"


class SyncSqlGenerator:
    """
    同步SQL生成器。

    根据校验通过的 SchemaModel 生成建表、数据装载、四个判定阶段
    (ADD / UPDATE / DELETE / KEEP) 以及重复检查所需的全部SQL语句。
    每个判定阶段都是一条 INSERT INTO sync_result ... SELECT 语句，
    结果字段按来源优先级取第一个非空值。
    """

    def __init__(self, config: SchemaModel, builder: SqlBuilder | None = None) -> None:
        """
        初始化同步SQL生成器。

        Args:
            config (SchemaModel): 经过完整校验的配置对象。
            builder (SqlBuilder | None): 语句构建器，默认使用 SQLite 方言。
        """
        self._config: SchemaModel = config
        self._builder: SqlBuilder = builder or SqlBuilder()
        rules = config.sync_rules
        self._mappings: dict[str, str] = rules.column_mappings
        self._provided_keys: list[str] = config.key_columns(PROVIDED_TABLE)
        self._result_keys: list[str] = config.key_columns(RESULT_TABLE)
        self._output_fields: list[OutputFieldSpec] = rules.output_fields
        self._action_column: str = rules.action_column

    @property
    def builder(self) -> SqlBuilder:
        return self._builder

    @property
    def uses_excluded_table(self) -> bool:
        return self._config.filter_for(CURRENT_TABLE).output_excluded_as_keep

    # --- 建表与装载 ---

    def generate_setup(self) -> list[str]:
        """生成删除并重建三张表（以及需要时的暂存表）的语句。"""
        statements = []
        table_names = [PROVIDED_TABLE, CURRENT_TABLE, RESULT_TABLE]
        if self.uses_excluded_table:
            table_names.append(EXCLUDED_CURRENT_TABLE)
        for name in reversed(table_names):
            statements.append(self._builder.drop_table(name))

        for name in (PROVIDED_TABLE, CURRENT_TABLE, RESULT_TABLE):
            schema = self._config.table(name)
            statements.append(self._builder.create_table(schema))
            statements.extend(self._builder.create_indexes(schema))

        if self.uses_excluded_table:
            statements.append(self._builder.create_table(
                self._config.table(CURRENT_TABLE),
                table_name=EXCLUDED_CURRENT_TABLE,
                with_constraints=False,
            ))
        return statements

    def generate_load(self, table_name: str, rows: Iterable[dict[str, Any]], target_table: str | None = None) -> list[str]:
        """
        生成将输入数据装载到表中的 INSERT 语句。自增ID字段不从输入数据装载。

        Args:
            table_name (str): 配置中的表名，用于确定字段列表。
            rows: 输入数据行。
            target_table (str | None): 实际写入的表，默认与 table_name 相同。
        """
        columns = [col.name for col in self._config.table(table_name).data_columns]
        return self._builder.insert_rows(target_table or table_name, columns, rows)

    # --- 判定阶段 ---

    def generate_phase(self, action: SyncAction) -> str:
        """
        生成单个判定阶段的语句。

        Args:
            action (SyncAction): 判定阶段。

        Returns:
            str: INSERT INTO sync_result ... SELECT 语句。
        """
        if action is SyncAction.ADD:
            return self._generate_add()
        if action is SyncAction.UPDATE:
            return self._generate_update()
        if action is SyncAction.DELETE:
            return self._generate_delete()
        return self._generate_keep()

    def _generate_add(self) -> str:
        first_key = self._mappings.get(self._provided_keys[0], self._provided_keys[0])
        return self._insert_select(
            SyncAction.ADD,
            from_clause=(
                f"{quote_identifier(PROVIDED_TABLE)} {PROVIDED_ALIAS}\n"
                f"LEFT JOIN {quote_identifier(CURRENT_TABLE)} {CURRENT_ALIAS}\n"
                f"    ON {self._join()}"
            ),
            where=f"{self._builder.qualified(CURRENT_ALIAS, first_key)} IS NULL",
            order_alias=PROVIDED_ALIAS,
        )

    def _generate_update(self) -> str:
        return self._insert_select(
            SyncAction.UPDATE,
            from_clause=self._inner_join(),
            where=self._builder.comparison_predicate(
                PROVIDED_ALIAS, CURRENT_ALIAS, self._config.compare_pairs(), CompareMode.DIFFERENT
            ),
            order_alias=PROVIDED_ALIAS,
        )

    def _generate_delete(self) -> str:
        return self._insert_select(
            SyncAction.DELETE,
            from_clause=(
                f"{quote_identifier(CURRENT_TABLE)} {CURRENT_ALIAS}\n"
                f"LEFT JOIN {quote_identifier(PROVIDED_TABLE)} {PROVIDED_ALIAS}\n"
                f"    ON {self._join()}"
            ),
            where=f"{self._builder.qualified(PROVIDED_ALIAS, self._provided_keys[0])} IS NULL",
            order_alias=CURRENT_ALIAS,
        )

    def _generate_keep(self) -> str:
        same = self._builder.comparison_predicate(
            PROVIDED_ALIAS, CURRENT_ALIAS, self._config.compare_pairs(), CompareMode.SAME
        )
        aliases = {SourceKind.PROVIDED_DATA: PROVIDED_ALIAS, SourceKind.CURRENT_DATA: CURRENT_ALIAS}
        return self._insert_select(
            SyncAction.KEEP,
            from_clause=self._inner_join(),
            where=f"{same}\n  AND {self._not_in_result(aliases)}",
            order_alias=PROVIDED_ALIAS,
        )

    def generate_excluded_keep(self) -> str:
        """
        生成将被过滤排除的现有数据作为 KEEP 输出的语句。
        已经在结果表中出现的键不会重复输出。
        """
        aliases = {SourceKind.CURRENT_DATA: CURRENT_ALIAS}
        return self._insert_select(
            SyncAction.KEEP,
            from_clause=f"{quote_identifier(EXCLUDED_CURRENT_TABLE)} {CURRENT_ALIAS}",
            where=self._not_in_result(aliases),
            order_alias=CURRENT_ALIAS,
            aliases=aliases,
        )

    def generate_duplicate_check(self) -> str:
        return self._builder.duplicate_check(RESULT_TABLE, self._result_keys)

    def generate_result_query(self) -> str:
        """查询结果表中的全部记录，按写入顺序排列。"""
        result = self._config.table(RESULT_TABLE)
        columns = ", ".join(quote_identifier(col.name) for col in result.data_columns)
        if result.has_column(SURROGATE_ID_COLUMN):
            order_by = quote_identifier(SURROGATE_ID_COLUMN)
        else:
            order_by = self._builder.group_by_clause(self._result_keys)
        return f"SELECT {columns}\nFROM {quote_identifier(RESULT_TABLE)}\nORDER BY {order_by};"

    # --- 组装 ---

    def field_expression(self, spec: OutputFieldSpec, aliases: dict[SourceKind, str]) -> str:
        """
        生成单个结果字段的取值表达式。

        来源按优先级依次尝试，空字符串视为无值；固定值总能取到，因此其后的
        来源不会再被使用。当前阶段不存在的表对应的来源被跳过。

        Args:
            spec (OutputFieldSpec): 结果字段定义。
            aliases (dict[SourceKind, str]): 当前阶段可用的表别名。

        Returns:
            str: SQL表达式，没有可用来源时为 NULL。
        """
        parts = []
        for source in spec.sources:
            if source.kind is SourceKind.FIXED_VALUE:
                parts.append(self._builder.literal(source.value))
                break
            alias = aliases.get(source.kind)
            if alias is None:
                continue
            parts.append(f"NULLIF({self._builder.qualified(alias, source.field)}, '')")
        return self._builder.coalesce(parts)

    def _insert_select(
        self,
        action: SyncAction,
        from_clause: str,
        where: str,
        order_alias: str,
        aliases: dict[SourceKind, str] | None = None
    ) -> str:
        if aliases is None:
            aliases = {SourceKind.PROVIDED_DATA: PROVIDED_ALIAS, SourceKind.CURRENT_DATA: CURRENT_ALIAS}
        target_columns = [spec.field for spec in self._output_fields] + [self._action_column]
        select_items = [
            f"    {self.field_expression(spec, aliases)} AS {quote_identifier(spec.field)}"
            for spec in self._output_fields
        ]
        select_items.append(f"    {self._builder.literal(action.value)} AS {quote_identifier(self._action_column)}")

        if order_alias == PROVIDED_ALIAS:
            order_by = self._builder.group_by_clause(self._provided_keys, PROVIDED_ALIAS)
        else:
            current_keys = [self._mappings.get(k, k) for k in self._provided_keys]
            order_by = self._builder.group_by_clause(current_keys, CURRENT_ALIAS)

        return (
            f"INSERT INTO {quote_identifier(RESULT_TABLE)} "
            f"({', '.join(quote_identifier(c) for c in target_columns)})\n"
            f"SELECT\n" + ",\n".join(select_items) + "\n"
            f"FROM {from_clause}\n"
            f"WHERE {where}\n"
            f"ORDER BY {order_by};"
        )

    def _join(self) -> str:
        return self._builder.join_predicate(PROVIDED_ALIAS, CURRENT_ALIAS, self._provided_keys, self._mappings)

    def _inner_join(self) -> str:
        return (
            f"{quote_identifier(PROVIDED_TABLE)} {PROVIDED_ALIAS}\n"
            f"INNER JOIN {quote_identifier(CURRENT_TABLE)} {CURRENT_ALIAS}\n"
            f"    ON {self._join()}"
        )

    def _not_in_result(self, aliases: dict[SourceKind, str]) -> str:
        """结果表中尚未出现该键（按结果字段的取值表达式比较）。"""
        specs = {spec.field: spec for spec in self._output_fields}
        key_exprs = [self.field_expression(specs[key], aliases) for key in self._result_keys]
        not_null = " AND ".join(f"{quote_identifier(k)} IS NOT NULL" for k in self._result_keys)
        subquery = (
            f"SELECT {self._builder.group_by_clause(self._result_keys)} "
            f"FROM {quote_identifier(RESULT_TABLE)} WHERE {not_null}"
        )
        return self._builder.anti_join_condition(key_exprs, subquery)

    def generate_script(self) -> str:
        """
        生成包含 建表 -> 四个判定阶段 -> 重复检查 的完整SQL脚本文本，
        用于导出和预览（不含数据装载语句）。
        """
        header = f"""-- ====================================================================
-- 数据同步判定脚本
-- 生成时间: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}
-- --------------------------------------------------------------------
--   提供数据键字段: {', '.join(self._provided_keys)}
--   结果表键字段: {', '.join(self._result_keys)}
--   比较字段: {', '.join(p for p, _ in self._config.compare_pairs()) or '无'}
-- ===================================================================="""
        parts = [header, "-- 1. 建表", *self.generate_setup()]
        for step, action in enumerate(SyncAction, start=2):
            parts.append(f"-- {step}. {action.value}")
            parts.append(self.generate_phase(action))
        if self.uses_excluded_table:
            parts.append("-- 被排除的现有数据作为 KEEP 输出")
            parts.append(self.generate_excluded_keep())
        parts.append("-- 重复检查")
        parts.append(self.generate_duplicate_check())
        return "\n\n".join(parts) + "\n"
