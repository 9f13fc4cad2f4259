from __future__ import annotations

import contextlib
from typing import Any, Dict, List, Literal, Tuple

import sqlalchemy as sa
from pydantic import Field

from ...core.errors import InvalidActionError
from ...core.options import NonEmptyStr, OptionsModel
from ...core.results import Row
from ..registry import register_connector
from .base import GUI_BULK_INSERT, SQL_MODE, SQLConnector, parse_bulk_records

CONNECTION_SID = "SID"
CONNECTION_SERVICE = "Service"

_COLUMNS = sa.text(
    "SELECT tabs.table_name, tabs.tablespace_name, cols.column_name, cols.data_type "
    "FROM user_tables tabs JOIN user_tab_columns cols ON tabs.table_name = cols.table_name "
    "WHERE tabs.tablespace_name IS NOT NULL"
)


class OracleResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    connection_type: Literal["SID", "Service"] = CONNECTION_SERVICE
    name: str = ""
    ssl: bool = False
    username: str = ""
    password: str = ""


class OracleAction(OptionsModel):
    mode: Literal["gui", "sql", "sql-safe"] = SQL_MODE
    opts: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)


@register_connector("oracle")
class OracleConnector(SQLConnector):
    resource_model = OracleResource
    action_model = OracleAction
    driver_module = "oracledb"
    extra_name = "oracle"
    ping_query = "SELECT 1 FROM DUAL"

    def engine_url(self, res: Any, stack: contextlib.ExitStack) -> sa.engine.URL:
        query: Dict[str, str] = {}
        database = None
        if res.connection_type == CONNECTION_SID:
            database = res.name or None
        elif res.name:
            query["service_name"] = res.name
        return sa.engine.URL.create(
            "oracle+oracledb",
            username=res.username or None,
            password=res.password or None,
            host=res.host,
            port=res.port,
            database=database,
            query=query,
        )

    def connect_args(self, res: Any, stack: contextlib.ExitStack) -> Dict[str, Any]:
        args: Dict[str, Any] = {"tcp_connect_timeout": self.connect_timeout}
        if res.ssl:
            args["protocol"] = "tcps"
        return args

    def query_text(self, action: Any) -> str:
        raw = action.opts.get("raw")
        if not isinstance(raw, str):
            raise InvalidActionError("type error of action content")
        return raw

    def gui_insert(self, action: Any) -> Tuple[str, List[Row]]:
        if action.opts.get("actionType") != GUI_BULK_INSERT:
            raise InvalidActionError("unsupported gui action type")
        return parse_bulk_records(action.opts.get("table"), action.opts.get("records"))

    def fetch_schema(self, conn: sa.engine.Connection, res: Any) -> Dict[str, Any]:
        rows = conn.execute(_COLUMNS).all()
        return self.columns_by_table([(f"{space}.{table}", column, dtype) for table, space, column, dtype in rows])


__all__ = ["OracleConnector"]
