from __future__ import annotations

import contextlib
import json
from typing import Any, Dict, Iterator, Literal

from pydantic import Field, model_validator

from ..core.errors import ConnectFailedError, InvalidActionError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import ConnectionResult, RuntimeResult
from .base import Connector, require_module
from .registry import register_connector


class ElasticsearchResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    username: NonEmptyStr
    password: NonEmptyStr


class ElasticsearchAction(OptionsModel):
    operation: Literal["search", "insert", "get", "update", "delete"]
    index: NonEmptyStr
    id: str = ""
    body: str = ""
    query: str = ""

    @model_validator(mode="after")
    def _id_for_document_ops(self):
        if self.operation in ("get", "update", "delete") and not self.id:
            raise ValueError(f"id is required for {self.operation}")
        return self


def es_address(host: str, port: int) -> str:
    if "://" not in host:
        host = "http://" + host
    return f"{host.rstrip('/')}:{port}"


def _json_object(text: str, what: str) -> Dict[str, Any]:
    if not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise InvalidActionError(f"elasticsearch: {what} is not valid JSON") from exc
    if not isinstance(parsed, dict):
        raise InvalidActionError(f"elasticsearch: {what} must be a JSON object")
    return parsed


@register_connector("elasticsearch")
class ElasticsearchConnector(Connector):
    resource_model = ElasticsearchResource
    action_model = ElasticsearchAction

    @contextlib.contextmanager
    def _client(self, res: ElasticsearchResource) -> Iterator[Any]:
        es = require_module("elasticsearch", "elasticsearch")
        client = es.Elasticsearch(
            hosts=[es_address(res.host, res.port)],
            basic_auth=(res.username, res.password),
        )
        self.log.handle_opened("elasticsearch", host=res.host)
        try:
            yield client
        finally:
            client.close()
            self.log.handle_released("elasticsearch", host=res.host)

    def _call(self, fn, **kwargs: Any) -> Dict[str, Any]:
        es = require_module("elasticsearch", "elasticsearch")
        try:
            resp = fn(**kwargs)
        except es.ConnectionError as exc:
            raise ConnectFailedError(f"elasticsearch: {exc}") from exc
        except (es.ApiError, es.TransportError) as exc:
            raise OperationFailedError(f"elasticsearch: {exc}") from exc
        return dict(resp.body)

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            if not client.ping():
                raise ConnectFailedError(f"elasticsearch: ping to {res.host} failed")
        return ConnectionResult(success=True)

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: ElasticsearchResource = self.decode_resource(resource_options)
        action: ElasticsearchAction = self.decode_action(action_options)
        with self._client(res) as client:
            if action.operation == "search":
                result = self._call(
                    client.search,
                    index=action.index,
                    body=_json_object(action.query, "query"),
                    track_total_hits=True,
                )
            elif action.operation == "insert":
                result = self._call(client.index, index=action.index, document=_json_object(action.body, "body"))
            elif action.operation == "get":
                result = self._call(client.get, index=action.index, id=action.id)
            elif action.operation == "update":
                result = self._call(client.update, index=action.index, id=action.id, body=_json_object(action.body, "body"))
            else:
                result = self._call(client.delete, index=action.index, id=action.id)
        return RuntimeResult(success=True, rows=[result])


__all__ = ["ElasticsearchConnector", "es_address"]
