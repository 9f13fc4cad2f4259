"""SQL-shaped connectors."""

from .base import SQLConnector, affected_message, reshape_driver_error
from .clickhouse import ClickHouseConnector
from .materialize import rows_to_mappings
from .mssql import MSSQLConnector
from .mysql import MySQLConnector
from .oracle import OracleConnector
from .postgres import PostgresConnector
from .snowflake import SnowflakeConnector

__all__ = [
    "SQLConnector",
    "MySQLConnector",
    "PostgresConnector",
    "MSSQLConnector",
    "OracleConnector",
    "ClickHouseConnector",
    "SnowflakeConnector",
    "affected_message",
    "reshape_driver_error",
    "rows_to_mappings",
]
