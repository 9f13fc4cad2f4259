from __future__ import annotations

import contextlib
from typing import Any, Dict, Literal

import sqlalchemy as sa
from pydantic import Field

from ...core.errors import ConnectFailedError
from ...core.options import NonEmptyStr, OptionsModel
from ..base import require_module
from ..registry import register_connector
from .base import SQLAction, SQLConnector

BASIC_AUTH = "basic"
KEY_PAIR_AUTH = "key"


class SnowflakeResource(OptionsModel):
    account_name: NonEmptyStr
    warehouse: NonEmptyStr
    database: NonEmptyStr
    schema_name: str = Field(default="", alias="schema")
    role: str = ""
    authentication: Literal["basic", "key"] = BASIC_AUTH
    auth_content: Dict[str, str]


def load_private_key(pem: str) -> bytes:
    """Return a PEM private key as unencrypted PKCS8 DER bytes."""
    serialization = require_module("cryptography.hazmat.primitives.serialization", "snowflake")
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as exc:
        raise ConnectFailedError("failed to parse PEM block containing the private key") from exc
    return key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@register_connector("snowflake")
class SnowflakeConnector(SQLConnector):
    resource_model = SnowflakeResource
    action_model = SQLAction
    driver_module = "snowflake.sqlalchemy"
    extra_name = "snowflake"

    def engine_url(self, res: Any, stack: contextlib.ExitStack) -> Any:
        sf = require_module("snowflake.sqlalchemy", self.extra_name)
        params: Dict[str, Any] = {
            "account": res.account_name,
            "user": res.auth_content.get("username", ""),
            "database": res.database,
            "warehouse": res.warehouse,
        }
        if res.schema_name:
            params["schema"] = res.schema_name
        if res.role:
            params["role"] = res.role
        if res.authentication == BASIC_AUTH:
            params["password"] = res.auth_content.get("password", "")
        return sf.URL(**params)

    def connect_args(self, res: Any, stack: contextlib.ExitStack) -> Dict[str, Any]:
        args: Dict[str, Any] = {"login_timeout": self.connect_timeout}
        if res.authentication == KEY_PAIR_AUTH:
            args["private_key"] = load_private_key(res.auth_content.get("privateKey", ""))
        return args

    def fetch_schema(self, conn: sa.engine.Connection, res: Any) -> Dict[str, Any]:
        schema: Dict[str, Any] = {}
        target = f"{res.database}.{res.schema_name}" if res.schema_name else res.database
        tables = conn.exec_driver_sql(f"SHOW TERSE TABLES IN SCHEMA {target}").all()
        for row in tables:
            name, table_schema = row[1], row[4]
            qualified = f"{table_schema}.{name}"
            cols = conn.exec_driver_sql(f"DESCRIBE TABLE {qualified}").all()
            schema[qualified] = {col[0]: {"data_type": col[1]} for col in cols}
        return schema


__all__ = ["SnowflakeConnector", "load_private_key"]
