import datetime
import logging
import os
import shutil

from datasync.config import SchemaModel, ResultRecord
from .csv_io import records_to_frame, write_rows

logger = logging.getLogger(__name__)


class FileExporter:
    """
    负责同步结果、SQL脚本的导出，以及输入文件的历史备份。
    """

    @staticmethod
    def export_result(
        records: list[ResultRecord],
        config: SchemaModel,
        output_path: str
    ) -> str:
        """
        将同步结果写出为CSV文件，格式由 csv_format.output 决定。

        只输出 csv_include 为真的字段，判定字段始终输出在最后一列。

        Args:
            records (list[ResultRecord]): 同步结果。
            config (SchemaModel): 配置对象。
            output_path (str): 输出文件路径。

        Returns:
            str: 写出的文件路径。
        """
        output_dir = os.path.dirname(output_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

        frame = records_to_frame(records, config.export_columns(), config.sync_rules.action_column)
        write_rows(output_path, frame, config.csv_format("output"))
        logger.info("同步结果已导出到: %s (%d 行)", output_path, len(records))
        return output_path

    @staticmethod
    def export_sql_script(sql_content: str, output_dir: str = "data") -> str:
        """
        将SQL脚本内容保存到 .sql 文件中，文件名带生成日期。

        Raises:
            IOError: 如果文件写入失败。
        """
        timestamp = datetime.datetime.now().strftime('%Y%m%d')
        filename = f"sync_{timestamp}.sql"

        # 确保输出目录存在
        os.makedirs(output_dir, exist_ok=True)

        file_path = os.path.join(output_dir, filename)
        try:
            with open(file_path, "w", encoding="utf-8") as f:
                f.write(sql_content)
        except IOError as e:
            logger.error("无法将脚本写入文件 %s。原因: %s", file_path, e)
            raise
        logger.info("脚本已成功导出到: %s", file_path)
        return file_path

    @staticmethod
    def archive_inputs(paths: list[str], history_dir: str, keep: int = 10) -> list[str]:
        """
        将输入文件复制到历史目录，文件名附加时间戳，并只保留最近 keep 份。

        Args:
            paths (list[str]): 要备份的文件。
            history_dir (str): 历史目录。
            keep (int): 每个文件保留的历史份数，0 表示不清理。

        Returns:
            list[str]: 新生成的备份文件路径。
        """
        os.makedirs(history_dir, exist_ok=True)
        timestamp = datetime.datetime.now().strftime('%Y%m%d_%H%M%S')
        copies = []
        for path in paths:
            stem, suffix = os.path.splitext(os.path.basename(path))
            target = os.path.join(history_dir, f"{stem}_{timestamp}{suffix}")
            shutil.copy2(path, target)
            copies.append(target)
            logger.info("已备份输入文件: %s -> %s", path, target)
            if keep > 0:
                FileExporter._prune_history(history_dir, stem, suffix, keep)
        return copies

    @staticmethod
    def _prune_history(history_dir: str, stem: str, suffix: str, keep: int) -> None:
        """删除同名文件中超出保留份数的旧备份（时间戳越新文件名越大）。"""
        prefix = f"{stem}_"
        backups = sorted(
            name for name in os.listdir(history_dir)
            if name.startswith(prefix) and name.endswith(suffix)
            and name[len(prefix):len(name) - len(suffix)].replace("_", "").isdigit()
        )
        for name in backups[:-keep]:
            os.remove(os.path.join(history_dir, name))
            logger.info("已删除旧备份: %s", name)
