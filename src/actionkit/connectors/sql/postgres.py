from __future__ import annotations

import contextlib
from typing import Any, Dict

import sqlalchemy as sa

from ..registry import register_connector
from .base import SQLConnector
from .tls import build_ssl_context

PUBLIC_SCHEMA = "public"

_TABLES = sa.text("SELECT table_name FROM information_schema.tables WHERE table_schema = :schema")
_COLUMNS = sa.text(
    "SELECT column_name, data_type FROM information_schema.columns "
    "WHERE table_schema = :schema AND table_name = :table"
)


@register_connector("postgresql", "supabasedb", "neon", "hydra")
class PostgresConnector(SQLConnector):
    driver_module = "pg8000"
    extra_name = "postgres"

    def engine_url(self, res: Any, stack: contextlib.ExitStack) -> sa.engine.URL:
        return sa.engine.URL.create(
            "postgresql+pg8000",
            username=res.database_username or None,
            password=res.database_password or None,
            host=res.host,
            port=res.port,
            database=res.database_name or None,
        )

    def connect_args(self, res: Any, stack: contextlib.ExitStack) -> Dict[str, Any]:
        args: Dict[str, Any] = {"timeout": self.connect_timeout}
        if res.ssl.ssl:
            # server name checks use the configured host
            args["ssl_context"] = build_ssl_context(
                ca_cert=res.ssl.server_cert or None,
                client_cert=res.ssl.client_cert or None,
                client_key=res.ssl.client_key or None,
            )
        return args

    def fetch_schema(self, conn: sa.engine.Connection, res: Any) -> Dict[str, Any]:
        schema: Dict[str, Any] = {}
        for (table,) in conn.execute(_TABLES, {"schema": PUBLIC_SCHEMA}).all():
            cols = conn.execute(_COLUMNS, {"schema": PUBLIC_SCHEMA, "table": table}).all()
            schema[table] = {name: {"data_type": dtype} for name, dtype in cols}
        return schema


__all__ = ["PostgresConnector"]
