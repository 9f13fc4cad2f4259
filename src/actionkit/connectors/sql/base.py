"""Shared behaviour for SQL-shaped connectors, built on SQLAlchemy engines."""

from __future__ import annotations

import contextlib
from typing import Any, ClassVar, Dict, Iterator, List, Literal, Optional, Tuple

import sqlalchemy as sa
from pydantic import Field
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from ...core.errors import (
    ActionError,
    ConnectFailedError,
    InvalidActionError,
    OperationFailedError,
    SQLSyntaxError,
    UnsupportedError,
)
from ...core.options import NonEmptyStr, OptionsModel
from ...core.results import ConnectionResult, MetaInfoResult, Row, RuntimeResult, ValidateResult
from ...sqlparse.lexer import is_select_sql
from ...template import to_bind_params
from ..base import Connector, Options, require_module
from .materialize import estimate_size, rows_to_mappings

SQL_MODE = "sql"
SQL_SAFE_MODE = "sql-safe"
GUI_MODE = "gui"
GUI_BULK_INSERT = "bulk_insert"

MYSQL_SYNTAX_ERROR = 1064


class SSLOptions(OptionsModel):
    ssl: bool = False
    server_cert: str = ""
    client_key: str = ""
    client_cert: str = ""


class SSHOptions(OptionsModel):
    ssh: bool = False


class SQLResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    database_name: str = ""
    database_username: str = ""
    database_password: str = ""
    ssl: SSLOptions = Field(default_factory=SSLOptions)
    ssh: SSHOptions = Field(default_factory=SSHOptions)


class SQLAction(OptionsModel):
    mode: Literal["gui", "sql", "sql-safe"] = SQL_MODE
    query: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


def affected_message(count: int) -> str:
    return f"Affected {count} rows."


def reshape_driver_error(exc: BaseException) -> Optional[SQLSyntaxError]:
    """Recognise MySQL error 1064 and turn it into a SQLSyntaxError."""
    orig = getattr(exc, "orig", None) or exc
    args = getattr(orig, "args", ())
    if args and args[0] == MYSQL_SYNTAX_ERROR:
        text = str(args[1]) if len(args) > 1 else str(orig)
        return SQLSyntaxError.from_driver_message(f"Error 1064: {text}")
    text = str(orig)
    if text.startswith("Error 1064:"):
        return SQLSyntaxError.from_driver_message(text)
    return None


class SQLConnector(Connector):
    """Template for SQL connectors.

    Subclasses supply the engine URL, connect arguments and meta queries.
    Every operation creates an engine, uses one connection and disposes the
    engine before returning.
    """

    resource_model = SQLResource
    action_model = SQLAction
    driver_module: ClassVar[str] = ""
    extra_name: ClassVar[str] = ""
    ping_query: ClassVar[str] = "SELECT 1"

    @property
    def connect_timeout(self) -> int:
        return self.config.sql.connect_timeout_s

    def engine_url(self, res: Any, stack: contextlib.ExitStack) -> Any:
        raise NotImplementedError

    def connect_args(self, res: Any, stack: contextlib.ExitStack) -> Dict[str, Any]:
        return {}

    def create_engine(self, res: Any, stack: contextlib.ExitStack) -> sa.engine.Engine:
        if self.driver_module:
            require_module(self.driver_module, self.extra_name)
        return sa.create_engine(
            self.engine_url(res, stack),
            connect_args=self.connect_args(res, stack),
            poolclass=NullPool,
        )

    @contextlib.contextmanager
    def connection(self, res: Any) -> Iterator[sa.engine.Connection]:
        if getattr(getattr(res, "ssh", None), "ssh", False):
            raise UnsupportedError("ssh tunnelling is not supported")
        with contextlib.ExitStack() as stack:
            engine = self.create_engine(res, stack)
            self.log.handle_opened("sql", type=self.type_name)
            try:
                try:
                    conn = engine.connect()
                except SQLAlchemyError as exc:
                    raise ConnectFailedError(f"{self.type_name}: failed to connect: {exc}") from exc
                with conn:
                    yield conn
            finally:
                engine.dispose()
                self.log.handle_released("sql", type=self.type_name)

    def test_connection(self, options: Optional[Options]) -> ConnectionResult:
        res = self.decode_resource(options)
        with self.connection(res) as conn:
            try:
                conn.execute(sa.text(self.ping_query))
            except SQLAlchemyError as exc:
                raise ConnectFailedError(f"{self.type_name}: ping failed: {exc}") from exc
        return ConnectionResult(success=True)

    def get_meta_info(self, options: Optional[Options]) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self.connection(res) as conn:
            try:
                schema = self.fetch_schema(conn, res)
            except SQLAlchemyError as exc:
                raise OperationFailedError(f"{self.type_name}: get meta info: {exc}") from exc
        return MetaInfoResult(success=True, schema=schema)

    def fetch_schema(self, conn: sa.engine.Connection, res: Any) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def columns_by_table(rows: List[Tuple[Any, ...]]) -> Dict[str, Dict[str, Any]]:
        """Group ``(table, column, data_type)`` triples into the meta schema shape."""
        out: Dict[str, Dict[str, Any]] = {}
        for table, column, data_type in rows:
            out.setdefault(str(table), {})[str(column)] = {"data_type": data_type}
        return out

    def query_text(self, action: Any) -> str:
        return action.query

    def gui_insert(self, action: Any) -> Tuple[str, List[Row]]:
        raise InvalidActionError(f"{self.type_name} does not support gui mode")

    def validate_action_options(self, options: Optional[Options]) -> ValidateResult:
        action = self.decode_action(options)
        if action.mode == GUI_MODE:
            self.gui_insert(action)
        else:
            is_select_sql(self.query_text(action))
        return ValidateResult(valid=True)

    def run(self, resource_options: Optional[Options], action_options: Optional[Options]) -> RuntimeResult:
        res = self.decode_resource(resource_options)
        action = self.decode_action(action_options)
        if action.mode == GUI_MODE:
            table, records = self.gui_insert(action)
            with self.connection(res) as conn:
                return self._guarded(lambda: self._bulk_insert(conn, table, records))

        raw = self.query_text(action)
        is_select = is_select_sql(raw)
        params: Dict[str, Any] = {}
        if action.mode == SQL_SAFE_MODE:
            raw, params = to_bind_params(raw, action.context)
        with self.connection(res) as conn:
            return self._guarded(lambda: self._execute(conn, raw, params, is_select, action.mode))

    def _guarded(self, fn) -> RuntimeResult:
        try:
            return fn()
        except ActionError:
            raise
        except (DBAPIError, SQLAlchemyError) as exc:
            reshaped = reshape_driver_error(exc)
            if reshaped is not None:
                raise reshaped from exc
            raise OperationFailedError(f"{self.type_name}: {exc}") from exc

    def _execute(
        self,
        conn: sa.engine.Connection,
        query: str,
        params: Dict[str, Any],
        is_select: bool,
        mode: str,
    ) -> RuntimeResult:
        if mode == SQL_SAFE_MODE:
            result = conn.execute(sa.text(query), params)
        else:
            result = conn.exec_driver_sql(query, execution_options={"no_parameters": True})
        if is_select:
            rows = rows_to_mappings(result) if result.returns_rows else []
            limit = self.config.sql.max_result_bytes
            if estimate_size(rows) > limit:
                raise OperationFailedError(
                    "returned result exceeds 20MiB, please adjust the query limit to reduce the number of results"
                )
            return RuntimeResult(success=True, rows=rows)
        affected = result.rowcount
        conn.commit()
        return RuntimeResult(success=True, extra={"message": affected_message(affected)})

    def _bulk_insert(self, conn: sa.engine.Connection, table_name: str, records: List[Row]) -> RuntimeResult:
        columns = list(records[0].keys())
        schema, _, name = table_name.rpartition(".")
        table = sa.table(name, *[sa.column(c) for c in columns], schema=schema or None)
        result = conn.execute(sa.insert(table), [{c: r.get(c) for c in columns} for r in records])
        conn.commit()
        count = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(records)
        return RuntimeResult(success=True, extra={"message": affected_message(count)})


def parse_bulk_records(table: Any, records: Any) -> Tuple[str, List[Row]]:
    if not isinstance(table, str) or not table:
        raise InvalidActionError("bulk insert requires a table name")
    if not isinstance(records, list) or not records or not all(isinstance(r, dict) for r in records):
        raise InvalidActionError("bulk insert requires a non-empty list of records")
    if not records[0]:
        raise InvalidActionError("bulk insert records have no columns")
    return table, records


__all__ = [
    "SSLOptions",
    "SSHOptions",
    "SQLResource",
    "SQLAction",
    "SQLConnector",
    "affected_message",
    "reshape_driver_error",
    "parse_bulk_records",
    "require_module",
]
