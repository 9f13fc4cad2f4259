from __future__ import annotations

import contextlib
from typing import Any, Dict

import sqlalchemy as sa
from pydantic import Field, model_validator

from ...core.options import NonEmptyStr, OptionsModel
from ..registry import register_connector
from .base import SQLAction, SQLConnector
from .tls import pem_file


class ClickHouseSSL(OptionsModel):
    ssl: bool = False
    self_signed: bool = False
    ca_cert: str = ""
    private_key: str = ""
    client_cert: str = ""

    @model_validator(mode="after")
    def _ca_for_self_signed(self):
        if self.self_signed and not self.ca_cert:
            raise ValueError("caCert is required for self-signed certificates")
        return self


class ClickHouseResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    database_name: NonEmptyStr
    username: str = ""
    password: str = ""
    ssl: ClickHouseSSL = Field(default_factory=ClickHouseSSL)


@register_connector("clickhouse")
class ClickHouseConnector(SQLConnector):
    resource_model = ClickHouseResource
    action_model = SQLAction
    driver_module = "clickhouse_sqlalchemy"
    extra_name = "clickhouse"

    def engine_url(self, res: Any, stack: contextlib.ExitStack) -> sa.engine.URL:
        query: Dict[str, str] = {}
        if res.ssl.ssl:
            query["protocol"] = "https"
        return sa.engine.URL.create(
            "clickhouse+http",
            username=res.username or None,
            password=res.password or None,
            host=res.host,
            port=res.port,
            database=res.database_name,
            query=query,
        )

    def connect_args(self, res: Any, stack: contextlib.ExitStack) -> Dict[str, Any]:
        args: Dict[str, Any] = {"timeout": self.connect_timeout}
        if res.ssl.ssl and res.ssl.self_signed:
            args["verify"] = pem_file(stack, res.ssl.ca_cert)
        if res.ssl.ssl and res.ssl.client_cert and res.ssl.private_key:
            args["cert"] = (pem_file(stack, res.ssl.client_cert), pem_file(stack, res.ssl.private_key))
        return args

    def fetch_schema(self, conn: sa.engine.Connection, res: Any) -> Dict[str, Any]:
        schema: Dict[str, Any] = {}
        for (table,) in conn.exec_driver_sql("SHOW TABLES").all():
            cols = conn.exec_driver_sql(f"DESCRIBE TABLE `{table}`").all()
            schema[table] = {row[0]: {"data_type": row[1]} for row in cols}
        return schema


__all__ = ["ClickHouseConnector"]
