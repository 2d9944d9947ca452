# 命令行入口：读取配置和两份CSV，执行同步判定并输出结果CSV
#
#   python main.py --config config/sync_config.json \
#       --provided data/provided.csv --current data/current.csv --output data/sync_result.csv

import argparse
import logging
import sys

from datasync.config import CURRENT_TABLE, PROVIDED_TABLE
from datasync.core import DatabaseConnector, MySQLConnector, SQLiteConnector
from datasync.errors import StoreError, ValidationError
from datasync.generator import SqlBuilder, SyncSqlGenerator
from datasync.services import ConfigService, SyncService
from datasync.utils import FileExporter, read_rows, setup_logging

logger = logging.getLogger("datasync")

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_INTEGRITY_WARNING = 2
EXIT_STORE_ERROR = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="提供数据与现有数据的同步判定 (ADD/UPDATE/DELETE/KEEP)")
    parser.add_argument("--config", required=True, help="同步配置文件 (JSON)")
    parser.add_argument("--provided", help="提供数据CSV")
    parser.add_argument("--current", help="现有数据CSV")
    parser.add_argument("--output", help="同步结果CSV")
    parser.add_argument("--dump-sql", metavar="DIR", help="只生成SQL脚本并保存到指定目录，不执行同步")

    db = parser.add_argument_group("数据库")
    db.add_argument("--db", choices=["sqlite", "mysql"], default="sqlite")
    db.add_argument("--sqlite-path", default=":memory:", help="SQLite 数据库文件，默认使用内存数据库")
    db.add_argument("--host", default="127.0.0.1")
    db.add_argument("--port", type=int, default=3306)
    db.add_argument("--user", default="root")
    db.add_argument("--password", default="")
    db.add_argument("--database", default="datasync")

    history = parser.add_argument_group("历史与日志")
    history.add_argument("--history-dir", help="输入文件的历史备份目录")
    history.add_argument("--history-keep", type=int, default=10, help="每个输入文件保留的备份份数")
    history.add_argument("--log-file", help="日志文件 (按大小轮转)")
    history.add_argument("--log-level", default="INFO")
    return parser


def create_connector(args: argparse.Namespace) -> DatabaseConnector:
    if args.db == "mysql":
        return MySQLConnector({
            'host': args.host,
            'port': args.port,
            'user': args.user,
            'password': args.password,
            'database': args.database,
        })
    return SQLiteConnector(args.sqlite_path)


def main(argv: list[str] | None = None) -> int:
    """主函数，串联 配置校验 -> 读取数据 -> 同步判定 -> 导出结果 的整个流程"""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = ConfigService().load_file(args.config)
    except ValidationError as e:
        logger.error("%s", e)
        return EXIT_CONFIG_ERROR

    if args.dump_sql:
        generator = SyncSqlGenerator(config, SqlBuilder(args.db))
        FileExporter.export_sql_script(generator.generate_script(), args.dump_sql)
        return EXIT_OK

    if not (args.provided and args.current and args.output):
        parser.error("执行同步需要 --provided、--current 和 --output")

    if args.history_dir:
        FileExporter.archive_inputs([args.provided, args.current], args.history_dir, args.history_keep)

    try:
        provided_rows = read_rows(
            args.provided, config.csv_format(PROVIDED_TABLE),
            [c.name for c in config.table(PROVIDED_TABLE).data_columns]
        )
        current_rows = read_rows(
            args.current, config.csv_format(CURRENT_TABLE),
            [c.name for c in config.table(CURRENT_TABLE).data_columns]
        )
    except (OSError, ValueError) as e:
        logger.error("读取输入文件失败: %s", e)
        return EXIT_CONFIG_ERROR

    try:
        with create_connector(args) as connector:
            report = SyncService(config, connector).run(provided_rows, current_rows)
    except StoreError as e:
        logger.error("同步中断: %s", e)
        return EXIT_STORE_ERROR

    FileExporter.export_result(report.records, config, args.output)

    if report.has_duplicates:
        logger.warning("同步结果存在重复键，请检查后再使用: %s", report.integrity_error())
        return EXIT_INTEGRITY_WARNING
    return EXIT_OK


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
