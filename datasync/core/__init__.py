from .db_connector import DatabaseConnector, MySQLConnector, SQLiteConnector
from .metadata_querier import MetaDataQuerier

__all__ = ["DatabaseConnector", "MySQLConnector", "SQLiteConnector", "MetaDataQuerier"]
