from __future__ import annotations

import contextlib
from typing import Any, Dict, List, Literal, Tuple

import sqlalchemy as sa
from pydantic import Field, model_validator

from ...core.errors import InvalidActionError
from ...core.options import NonEmptyStr, OptionsModel, pairs_to_dict
from ...core.results import Row
from ..registry import register_connector
from .base import GUI_BULK_INSERT, SQL_MODE, SQLConnector, parse_bulk_records

ODBC_DRIVER = "ODBC Driver 18 for SQL Server"
VERIFY_FULL = "full"
SKIP_CA = "skip"

_TABLES = sa.text("SELECT TABLE_NAME, TABLE_SCHEMA FROM INFORMATION_SCHEMA.TABLES")
_COLUMNS = sa.text(
    "SELECT COLUMN_NAME, DATA_TYPE FROM INFORMATION_SCHEMA.COLUMNS "
    "WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table"
)


class MSSQLSSL(OptionsModel):
    ssl: bool = False
    ca_cert: str = ""
    private_key: str = ""
    client_cert: str = ""
    verification_mode: Literal["full", "skip"] = VERIFY_FULL


class MSSQLResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    database_name: NonEmptyStr
    username: str = ""
    password: str = ""
    connection_opts: List[Dict[str, Any]] = Field(default_factory=list)
    ssl: MSSQLSSL = Field(default_factory=MSSQLSSL)

    @model_validator(mode="after")
    def _ca_for_full_verification(self):
        if self.ssl.ssl and self.ssl.verification_mode == VERIFY_FULL and not self.ssl.ca_cert:
            raise ValueError("CA Cert required")
        return self


class MSSQLAction(OptionsModel):
    mode: Literal["gui", "sql", "sql-safe"] = SQL_MODE
    query: Dict[str, Any]
    context: Dict[str, Any] = Field(default_factory=dict)


@register_connector("mssql")
class MSSQLConnector(SQLConnector):
    resource_model = MSSQLResource
    action_model = MSSQLAction
    driver_module = "pyodbc"
    extra_name = "mssql"

    def engine_url(self, res: Any, stack: contextlib.ExitStack) -> sa.engine.URL:
        query: Dict[str, str] = {"driver": ODBC_DRIVER}
        if res.ssl.ssl:
            query["Encrypt"] = "yes"
            query["TrustServerCertificate"] = "no" if res.ssl.verification_mode == VERIFY_FULL else "yes"
        else:
            query["Encrypt"] = "no"
        for key, value in pairs_to_dict(res.connection_opts).items():
            query[key] = "" if value is None else str(value)
        return sa.engine.URL.create(
            "mssql+pyodbc",
            username=res.username or None,
            password=res.password or None,
            host=res.host,
            port=res.port,
            database=res.database_name,
            query=query,
        )

    def connect_args(self, res: Any, stack: contextlib.ExitStack) -> Dict[str, Any]:
        return {"timeout": self.connect_timeout}

    def query_text(self, action: Any) -> str:
        sql = action.query.get("sql")
        if not isinstance(sql, str):
            raise InvalidActionError("type error of action content")
        return sql

    def gui_insert(self, action: Any) -> Tuple[str, List[Row]]:
        if action.query.get("type") != GUI_BULK_INSERT:
            raise InvalidActionError("type error of action content")
        return parse_bulk_records(action.query.get("table"), action.query.get("records"))

    def fetch_schema(self, conn: sa.engine.Connection, res: Any) -> Dict[str, Any]:
        schema: Dict[str, Any] = {}
        for table, table_schema in conn.execute(_TABLES).all():
            cols = conn.execute(_COLUMNS, {"schema": table_schema, "table": table}).all()
            schema[f"{table_schema}.{table}"] = {name: {"data_type": dtype} for name, dtype in cols}
        return schema


__all__ = ["MSSQLConnector"]
