from __future__ import annotations

import contextlib
from typing import Any, Iterator

from pydantic import Field

from ..core.errors import ConnectFailedError, InvalidActionError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import ConnectionResult, MetaInfoResult, RuntimeResult
from .base import Connector, require_module
from .registry import register_connector


class RedisResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    database_index: int = Field(default=0, ge=0)
    database_username: str = ""
    database_password: str = ""
    ssl: bool = False


class RedisAction(OptionsModel):
    query: NonEmptyStr


@register_connector("redis", "upstash")
class RedisConnector(Connector):
    resource_model = RedisResource
    action_model = RedisAction

    @contextlib.contextmanager
    def _client(self, res: RedisResource) -> Iterator[Any]:
        redis = require_module("redis", "redis")
        client = redis.Redis(
            host=res.host,
            port=res.port,
            db=res.database_index,
            username=res.database_username or None,
            password=res.database_password or None,
            ssl=res.ssl,
            socket_connect_timeout=self.config.sql.connect_timeout_s,
            decode_responses=True,
        )
        self.log.handle_opened("redis", host=res.host)
        try:
            try:
                client.ping()
            except redis.exceptions.RedisError as exc:
                raise ConnectFailedError(f"redis: {exc}") from exc
            yield client
        finally:
            client.close()
            self.log.handle_released("redis", host=res.host)

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._client(res):
            pass
        return ConnectionResult(success=True)

    def get_meta_info(self, options) -> MetaInfoResult:
        self.decode_resource(options)
        return MetaInfoResult(success=True, schema=None)

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: RedisResource = self.decode_resource(resource_options)
        action: RedisAction = self.decode_action(action_options)
        args = action.query.split()
        if not args:
            raise InvalidActionError("redis: empty command")
        redis = require_module("redis", "redis")
        with self._client(res) as client:
            try:
                value = client.execute_command(*args)
            except redis.exceptions.RedisError as exc:
                raise OperationFailedError(f"redis: {exc}") from exc
        return RuntimeResult(success=True, rows=[{"result": value}])


__all__ = ["RedisConnector", "RedisResource"]
