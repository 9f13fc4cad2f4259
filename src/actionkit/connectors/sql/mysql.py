from __future__ import annotations

import contextlib
from typing import Any, Dict

import sqlalchemy as sa

from ..registry import register_connector
from .base import SQLConnector
from .tls import build_ssl_context

_TABLES = sa.text("SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_SCHEMA = :schema")
_COLUMNS = sa.text(
    "SELECT COLUMN_NAME, DATA_TYPE FROM INFORMATION_SCHEMA.COLUMNS "
    "WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table"
)


@register_connector("mysql", "mariadb", "tidb")
class MySQLConnector(SQLConnector):
    driver_module = "pymysql"
    extra_name = "mysql"

    def engine_url(self, res: Any, stack: contextlib.ExitStack) -> sa.engine.URL:
        return sa.engine.URL.create(
            "mysql+pymysql",
            username=res.database_username or None,
            password=res.database_password or None,
            host=res.host,
            port=res.port,
            database=res.database_name or None,
        )

    def connect_args(self, res: Any, stack: contextlib.ExitStack) -> Dict[str, Any]:
        args: Dict[str, Any] = {"connect_timeout": self.connect_timeout}
        if res.ssl.ssl:
            args["ssl"] = build_ssl_context(
                ca_cert=res.ssl.server_cert or None,
                client_cert=res.ssl.client_cert or None,
                client_key=res.ssl.client_key or None,
            )
        return args

    def fetch_schema(self, conn: sa.engine.Connection, res: Any) -> Dict[str, Any]:
        schema: Dict[str, Any] = {}
        for (table,) in conn.execute(_TABLES, {"schema": res.database_name}).all():
            cols = conn.execute(_COLUMNS, {"schema": res.database_name, "table": table}).all()
            schema[table] = {name: {"data_type": dtype} for name, dtype in cols}
        return schema


__all__ = ["MySQLConnector"]
