from .csv_io import read_rows, records_to_frame, write_rows
from .file_exporter import FileExporter
from .logging_config import setup_logging

__all__ = ["read_rows", "records_to_frame", "write_rows", "FileExporter", "setup_logging"]
