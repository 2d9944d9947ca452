from __future__ import annotations

import logging
from typing import Any, Sequence

import pandas as pd

from datasync.config import CsvFormat, ResultRecord

logger = logging.getLogger(__name__)


def read_rows(source: Any, fmt: CsvFormat, columns: Sequence[str] | None = None) -> list[dict[str, Any]]:
    """
    读取CSV文件，返回 字段名->值 的字典列表。

    所有值按字符串读取，null_values 中的值（包括空字符串）读为 None。

    Args:
        source (Any): 文件路径或类文件对象（例如 Streamlit 上传的文件）。
        fmt (CsvFormat): CSV格式配置。
        columns (Sequence[str] | None): 文件没有表头时使用的字段名。

    Returns:
        list[dict[str, Any]]: 数据行。
    """
    if not fmt.has_header and not columns:
        raise ValueError("CSV没有表头时必须指定字段名。")

    df = pd.read_csv(
        source,
        sep=fmt.delimiter,
        encoding=fmt.encoding,
        header=0 if fmt.has_header else None,
        names=None if fmt.has_header else list(columns),
        dtype=str,
        keep_default_na=False,
        na_values=fmt.null_values,
    )
    df = df.astype(object)
    rows = df.where(df.notna(), None).to_dict(orient="records")
    logger.info("读取CSV: %s (%d 行)", getattr(source, "name", source), len(rows))
    return rows


def records_to_frame(records: list[ResultRecord], columns: Sequence[str], action_column: str) -> pd.DataFrame:
    """将同步结果转换为 DataFrame，字段顺序与 columns 一致。"""
    data = [{**record.values, action_column: record.action.value} for record in records]
    return pd.DataFrame(data, columns=list(columns))


def write_rows(target: Any, frame: pd.DataFrame, fmt: CsvFormat) -> str | None:
    """
    按CSV格式配置写出 DataFrame，空值写为 null_values 的第一个值。
    target 为 None 时返回CSV文本。
    """
    return frame.to_csv(
        target,
        sep=fmt.delimiter,
        encoding=fmt.encoding,
        header=fmt.include_header,
        index=False,
        na_rep=fmt.null_token,
    )
