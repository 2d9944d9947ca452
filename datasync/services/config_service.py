from __future__ import annotations

import json
import logging
from typing import Any

from datasync.config import (
    CURRENT_TABLE,
    PROVIDED_TABLE,
    REQUIRED_TABLES,
    RESULT_TABLE,
    SURROGATE_ID_COLUMN,
    ColumnSpec,
    ConstraintKind,
    CsvFormat,
    FilterKind,
    FilterRule,
    IndexSpec,
    OutputFieldSpec,
    SchemaModel,
    SourceKind,
    SourceSpec,
    SyncRules,
    TableConstraint,
    TableFilter,
    TableSchema,
)
from datasync.errors import ValidationError

logger = logging.getLogger(__name__)

CSV_FORMAT_SECTIONS = (PROVIDED_TABLE, CURRENT_TABLE, "output")


class ConfigService:
    """
    配置服务，负责解析和校验同步配置文档。

    配置文档中的各个部分按固定顺序校验，任何一项失败都会抛出
    ValidationError，并附带出错的配置路径；校验全部通过后才会构建出
    SchemaModel 配置对象。
    """

    def load_file(self, path: str) -> SchemaModel:
        """
        从JSON文件加载并校验配置。

        Args:
            path (str): 配置文件路径。

        Returns:
            SchemaModel: 校验通过的配置对象。

        Raises:
            ValidationError: 文件无法读取、不是合法JSON或校验失败时抛出。
        """
        logger.info("加载配置文件: %s", path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except OSError as e:
            raise ValidationError(path, f"无法读取配置文件: {e}") from e
        except json.JSONDecodeError as e:
            raise ValidationError(path, f"配置文件不是合法的JSON: {e}") from e
        return self.load(document)

    def load(self, document: dict[str, Any]) -> SchemaModel:
        """
        校验配置文档并构建 SchemaModel。

        校验顺序：
        1. 每张表至少有一个字段，字段名不重复。
        2. provided_data、current_data、sync_result 三张表必须存在。
        3. 字段映射的两端都是对应表中已声明的字段。
        4. 各表的键字段都是已声明的字段。
        5. 过滤规则字段、结果字段来源字段均已声明。
        6. 表级约束类型合法且引用的字段存在。

        Args:
            document (dict[str, Any]): 已解析的JSON配置文档。

        Returns:
            SchemaModel: 校验通过的配置对象。

        Raises:
            ValidationError: 任何校验失败时抛出。
        """
        _require_dict(document, "<root>")
        tables_doc = _require_dict(document.get("tables"), "tables")
        sync_rules_doc = _require_dict(document.get("sync_rules"), "sync_rules")

        columns = self._parse_columns(tables_doc)
        self._validate_required_tables(columns)
        mappings = self._parse_column_mappings(sync_rules_doc, columns)
        key_columns = self._parse_key_columns(sync_rules_doc, columns, mappings)
        data_filters = self._parse_data_filters(document.get("data_filters", {}), columns)
        sync_rules = self._parse_sync_rules(sync_rules_doc, columns, key_columns, mappings)
        tables = self._build_tables(tables_doc, columns)
        csv_formats = self._parse_csv_formats(document.get("csv_format", {}))

        config = SchemaModel(
            tables=tables,
            sync_rules=sync_rules,
            data_filters=data_filters,
            csv_formats=csv_formats,
        )
        logger.info(
            "配置校验通过: %d 张表, %d 个字段映射, %d 个结果字段。",
            len(tables), len(mappings), len(sync_rules.output_fields)
        )
        return config

    # --- 1. 表字段 ---

    def _parse_columns(self, tables_doc: dict[str, Any]) -> dict[str, list[ColumnSpec]]:
        """解析每张表的字段定义。"""
        result: dict[str, list[ColumnSpec]] = {}
        for table_name, table_doc in tables_doc.items():
            section = f"tables.{table_name}"
            _require_dict(table_doc, section)
            columns_doc = _require_list(table_doc.get("columns"), f"{section}.columns")
            if not columns_doc:
                raise ValidationError(f"{section}.columns", "至少需要声明一个字段。")

            seen: set[str] = set()
            columns = []
            for idx, col_doc in enumerate(columns_doc):
                col_section = f"{section}.columns[{idx}]"
                _require_dict(col_doc, col_section)
                name = col_doc.get("name")
                if not name or not isinstance(name, str):
                    raise ValidationError(f"{col_section}.name", "字段名不能为空。")
                if name in seen:
                    raise ValidationError(f"{col_section}.name", f"字段 '{name}' 重复声明。")
                seen.add(name)
                columns.append(ColumnSpec(
                    name=name,
                    data_type=str(col_doc.get("type") or "TEXT"),
                    constraints=str(col_doc.get("constraints") or ""),
                    csv_include=bool(col_doc.get("csv_include", name != SURROGATE_ID_COLUMN)),
                    required=bool(col_doc.get("required", False)),
                    description=str(col_doc.get("description") or ""),
                ))
            result[table_name] = columns
        return result

    # --- 2. 必需表 ---

    def _validate_required_tables(self, columns: dict[str, list[ColumnSpec]]) -> None:
        for table_name in REQUIRED_TABLES:
            if table_name not in columns:
                raise ValidationError("tables", f"缺少必需的表 '{table_name}'。")

    # --- 3. 字段映射 ---

    def _parse_column_mappings(
        self, sync_rules_doc: dict[str, Any], columns: dict[str, list[ColumnSpec]]
    ) -> dict[str, str]:
        section = "sync_rules.column_mappings.mappings"
        mapping_doc = _require_dict(sync_rules_doc.get("column_mappings", {}), "sync_rules.column_mappings")
        mappings = _require_dict(mapping_doc.get("mappings", {}), section)

        provided_names = _names(columns[PROVIDED_TABLE])
        current_names = _names(columns[CURRENT_TABLE])
        for provided_col, current_col in mappings.items():
            if provided_col not in provided_names:
                raise ValidationError(
                    f"{section}.{provided_col}", f"字段 '{provided_col}' 不是 {PROVIDED_TABLE} 的字段。"
                )
            if not isinstance(current_col, str) or current_col not in current_names:
                raise ValidationError(
                    f"{section}.{provided_col}", f"映射目标 '{current_col}' 不是 {CURRENT_TABLE} 的字段。"
                )
        return dict(mappings)

    # --- 4. 键字段 ---

    def _parse_key_columns(
        self,
        sync_rules_doc: dict[str, Any],
        columns: dict[str, list[ColumnSpec]],
        mappings: dict[str, str]
    ) -> dict[str, list[str]]:
        key_doc = _require_dict(sync_rules_doc.get("key_columns"), "sync_rules.key_columns")
        key_columns: dict[str, list[str]] = {}

        for table_name in REQUIRED_TABLES:
            if table_name not in key_doc:
                raise ValidationError("sync_rules.key_columns", f"缺少表 '{table_name}' 的键字段配置。")

        for table_name, keys in key_doc.items():
            section = f"sync_rules.key_columns.{table_name}"
            if table_name not in columns:
                raise ValidationError(section, f"表 '{table_name}' 未声明。")
            keys = _require_list(keys, section)
            if not keys:
                raise ValidationError(section, "键字段列表不能为空。")
            declared = _names(columns[table_name])
            for key in keys:
                if key not in declared:
                    raise ValidationError(section, f"键字段 '{key}' 在表 '{table_name}' 中不存在。")
                if key == SURROGATE_ID_COLUMN:
                    raise ValidationError(section, "自增ID字段不能作为键字段。")
            key_columns[table_name] = list(keys)

        # provided_data 的键需要能在 current_data 中找到对应字段
        current_names = _names(columns[CURRENT_TABLE])
        for key in key_columns[PROVIDED_TABLE]:
            counterpart = mappings.get(key, key)
            if counterpart not in current_names:
                raise ValidationError(
                    f"sync_rules.column_mappings.mappings.{key}",
                    f"键字段 '{key}' 在 {CURRENT_TABLE} 中没有对应字段，需要配置字段映射。"
                )
        return key_columns

    # --- 5. 过滤规则与结果字段 ---

    def _parse_data_filters(
        self, filters_doc: Any, columns: dict[str, list[ColumnSpec]]
    ) -> dict[str, TableFilter]:
        filters_doc = _require_dict(filters_doc, "data_filters")
        data_filters: dict[str, TableFilter] = {}

        for table_name, table_doc in filters_doc.items():
            section = f"data_filters.{table_name}"
            if table_name not in columns:
                raise ValidationError(section, f"表 '{table_name}' 未声明。")
            _require_dict(table_doc, section)
            declared = _names(columns[table_name])

            rules = []
            for idx, rule_doc in enumerate(_require_list(table_doc.get("rules", []), f"{section}.rules")):
                rule_section = f"{section}.rules[{idx}]"
                _require_dict(rule_doc, rule_section)
                field_name = rule_doc.get("field")
                if field_name not in declared:
                    raise ValidationError(f"{rule_section}.field", f"字段 '{field_name}' 在表 '{table_name}' 中不存在。")
                try:
                    kind = FilterKind(rule_doc.get("type"))
                except ValueError:
                    raise ValidationError(
                        f"{rule_section}.type", f"未知的规则类型 '{rule_doc.get('type')}'，只支持 include/exclude。"
                    ) from None
                has_glob = rule_doc.get("glob") is not None
                has_value = rule_doc.get("value") is not None
                if has_glob == has_value:
                    raise ValidationError(rule_section, "glob 与 value 必须且只能指定一个。")
                rules.append(FilterRule(
                    field=field_name,
                    kind=kind,
                    glob=str(rule_doc["glob"]) if has_glob else None,
                    value=str(rule_doc["value"]) if has_value else None,
                    description=str(rule_doc.get("description") or ""),
                ))

            excluded_as_keep = bool(table_doc.get("output_excluded_as_keep", False))
            if excluded_as_keep and table_name != CURRENT_TABLE:
                logger.warning("%s.output_excluded_as_keep 只对 %s 生效，已忽略。", section, CURRENT_TABLE)
                excluded_as_keep = False

            data_filters[table_name] = TableFilter(
                enabled=bool(table_doc.get("enabled", False)),
                rules=rules,
                output_excluded_as_keep=excluded_as_keep,
            )
        return data_filters

    def _parse_sync_rules(
        self,
        sync_rules_doc: dict[str, Any],
        columns: dict[str, list[ColumnSpec]],
        key_columns: dict[str, list[str]],
        mappings: dict[str, str]
    ) -> SyncRules:
        section = "sync_rules.sync_result_mapping"
        result_doc = _require_dict(sync_rules_doc.get("sync_result_mapping"), section)
        fields_doc = _require_dict(result_doc.get("mappings"), f"{section}.mappings")

        result_names = _names(columns[RESULT_TABLE])
        action_column = result_doc.get("action_column", "sync_action")
        if action_column not in result_names:
            raise ValidationError(
                f"{section}.action_column", f"判定字段 '{action_column}' 在表 '{RESULT_TABLE}' 中不存在。"
            )

        output_fields = []
        for field_name, field_doc in fields_doc.items():
            field_section = f"{section}.mappings.{field_name}"
            if field_name not in result_names:
                raise ValidationError(field_section, f"字段 '{field_name}' 在表 '{RESULT_TABLE}' 中不存在。")
            if field_name == action_column:
                raise ValidationError(field_section, "判定字段由同步处理写入，不能配置取值来源。")
            _require_dict(field_doc, field_section)
            sources = self._parse_sources(field_doc.get("sources"), f"{field_section}.sources", columns)
            output_fields.append(OutputFieldSpec(field=field_name, sources=sources))

        configured = {spec.field for spec in output_fields}
        for key in key_columns[RESULT_TABLE]:
            if key not in configured:
                raise ValidationError(f"{section}.mappings.{key}", f"结果表键字段 '{key}' 缺少取值来源。")

        compare_columns = sync_rules_doc.get("compare_columns")
        if compare_columns is not None:
            compare_columns = list(_require_list(compare_columns, "sync_rules.compare_columns"))
            for col in compare_columns:
                if col not in mappings:
                    raise ValidationError(
                        "sync_rules.compare_columns", f"比较字段 '{col}' 没有配置字段映射。"
                    )

        return SyncRules(
            key_columns=key_columns,
            column_mappings=mappings,
            output_fields=output_fields,
            action_column=action_column,
            compare_columns=compare_columns,
        )

    def _parse_sources(
        self, sources_doc: Any, section: str, columns: dict[str, list[ColumnSpec]]
    ) -> list[SourceSpec]:
        """解析单个结果字段的取值来源，并按优先级排序。"""
        sources_doc = _require_list(sources_doc, section)
        if not sources_doc:
            raise ValidationError(section, "至少需要一个取值来源。")

        sources = []
        seen_priorities: set[int] = set()
        for idx, source_doc in enumerate(sources_doc):
            source_section = f"{section}[{idx}]"
            _require_dict(source_doc, source_section)
            try:
                kind = SourceKind(source_doc.get("type"))
            except ValueError:
                raise ValidationError(
                    f"{source_section}.type", f"未知的来源类型 '{source_doc.get('type')}'。"
                ) from None

            priority = source_doc.get("priority", idx + 1)
            if not isinstance(priority, int) or isinstance(priority, bool):
                raise ValidationError(f"{source_section}.priority", "优先级必须是整数。")
            if priority in seen_priorities:
                raise ValidationError(f"{source_section}.priority", f"优先级 {priority} 重复。")
            seen_priorities.add(priority)

            if kind is SourceKind.FIXED_VALUE:
                if source_doc.get("value") is None:
                    raise ValidationError(f"{source_section}.value", "固定值来源需要指定非空的 value。")
                sources.append(SourceSpec(kind=kind, value=source_doc["value"], priority=priority))
                continue

            field_name = source_doc.get("field")
            if field_name not in _names(columns[kind.value]):
                raise ValidationError(
                    f"{source_section}.field", f"字段 '{field_name}' 在表 '{kind.value}' 中不存在。"
                )
            sources.append(SourceSpec(kind=kind, field=field_name, priority=priority))

        return sorted(sources, key=lambda s: s.priority)

    # --- 6. 表级约束与索引 ---

    def _build_tables(
        self, tables_doc: dict[str, Any], columns: dict[str, list[ColumnSpec]]
    ) -> dict[str, TableSchema]:
        tables = {}
        for table_name, table_doc in tables_doc.items():
            section = f"tables.{table_name}"
            declared = _names(columns[table_name])

            constraints = []
            constraints_doc = _require_list(table_doc.get("table_constraints", []), f"{section}.table_constraints")
            for idx, c_doc in enumerate(constraints_doc):
                c_section = f"{section}.table_constraints[{idx}]"
                _require_dict(c_doc, c_section)
                raw_type = str(c_doc.get("type") or "").strip().upper().replace(" ", "_")
                try:
                    kind = ConstraintKind(raw_type)
                except ValueError:
                    raise ValidationError(f"{c_section}.type", f"未知的约束类型 '{c_doc.get('type')}'。") from None
                c_columns = self._validate_column_list(c_doc.get("columns"), declared, f"{c_section}.columns")

                ref_table, ref_columns = "", []
                if kind is ConstraintKind.FOREIGN_KEY:
                    ref_doc = _require_dict(c_doc.get("references"), f"{c_section}.references")
                    ref_table = ref_doc.get("table")
                    if ref_table not in columns:
                        raise ValidationError(f"{c_section}.references.table", f"引用的表 '{ref_table}' 未声明。")
                    ref_columns = self._validate_column_list(
                        ref_doc.get("columns"), _names(columns[ref_table]), f"{c_section}.references.columns"
                    )
                constraints.append(TableConstraint(
                    name=str(c_doc.get("name") or ""),
                    kind=kind,
                    columns=c_columns,
                    ref_table=ref_table,
                    ref_columns=ref_columns,
                ))

            indexes = []
            for idx, i_doc in enumerate(_require_list(table_doc.get("indexes", []), f"{section}.indexes")):
                i_section = f"{section}.indexes[{idx}]"
                _require_dict(i_doc, i_section)
                if not i_doc.get("name"):
                    raise ValidationError(f"{i_section}.name", "索引名不能为空。")
                indexes.append(IndexSpec(
                    name=i_doc["name"],
                    columns=self._validate_column_list(i_doc.get("columns"), declared, f"{i_section}.columns"),
                ))

            tables[table_name] = TableSchema(
                name=table_name,
                columns=columns[table_name],
                indexes=indexes,
                constraints=constraints,
            )
        return tables

    def _validate_column_list(self, value: Any, declared: set[str], section: str) -> list[str]:
        """检查字段列表非空且每个字段都已声明。"""
        names = _require_list(value, section)
        if not names:
            raise ValidationError(section, "字段列表不能为空。")
        for name in names:
            if name not in declared:
                raise ValidationError(section, f"字段 '{name}' 不存在。")
        return list(names)

    def _parse_csv_formats(self, formats_doc: Any) -> dict[str, CsvFormat]:
        formats_doc = _require_dict(formats_doc, "csv_format")
        formats = {}
        for name in CSV_FORMAT_SECTIONS:
            if name not in formats_doc:
                continue
            fmt_doc = _require_dict(formats_doc[name], f"csv_format.{name}")
            defaults = CsvFormat()
            null_values = fmt_doc.get("null_values", defaults.null_values)
            null_values = [str(v) for v in _require_list(null_values, f"csv_format.{name}.null_values")]
            delimiter = fmt_doc.get("delimiter", defaults.delimiter)
            if not isinstance(delimiter, str) or len(delimiter) != 1:
                raise ValidationError(f"csv_format.{name}.delimiter", "分隔符必须是单个字符。")
            formats[name] = CsvFormat(
                encoding=fmt_doc.get("encoding", defaults.encoding),
                delimiter=delimiter,
                has_header=bool(fmt_doc.get("has_header", defaults.has_header)),
                include_header=bool(fmt_doc.get("include_header", defaults.include_header)),
                null_values=null_values,
            )
        return formats


def _names(columns: list[ColumnSpec]) -> set[str]:
    return {col.name for col in columns}


def _require_dict(value: Any, section: str) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(section, "必须是对象 (JSON object)。")
    return value


def _require_list(value: Any, section: str) -> list:
    if not isinstance(value, list):
        raise ValidationError(section, "必须是数组 (JSON array)。")
    return value
