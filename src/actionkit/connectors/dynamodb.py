from __future__ import annotations

import contextlib
import json
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Literal, Optional

from pydantic import Field, model_validator

from ..core.errors import ConnectFailedError, InvalidActionError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import ConnectionResult, MetaInfoResult, RuntimeResult
from .base import Connector, require_module
from .registry import register_connector

# request field -> attribute-value encoded?
METHOD_FIELDS: Dict[str, Dict[str, bool]] = {
    "query": {
        "IndexName": False,
        "KeyConditionExpression": False,
        "ProjectionExpression": False,
        "FilterExpression": False,
        "ExpressionAttributeNames": False,
        "ExpressionAttributeValues": True,
        "Limit": False,
        "Select": False,
    },
    "scan": {
        "IndexName": False,
        "ProjectionExpression": False,
        "FilterExpression": False,
        "ExpressionAttributeNames": False,
        "ExpressionAttributeValues": True,
        "Limit": False,
        "Select": False,
    },
    "putItem": {
        "Item": True,
        "ConditionExpression": False,
        "ExpressionAttributeNames": False,
        "ExpressionAttributeValues": True,
    },
    "getItem": {
        "Key": True,
        "ProjectionExpression": False,
        "ExpressionAttributeNames": False,
    },
    "updateItem": {
        "Key": True,
        "UpdateExpression": False,
        "ConditionExpression": False,
        "ExpressionAttributeNames": False,
        "ExpressionAttributeValues": True,
    },
    "deleteItem": {
        "Key": True,
        "ConditionExpression": False,
        "ExpressionAttributeNames": False,
        "ExpressionAttributeValues": True,
    },
}

WRITE_MESSAGES = {
    "putItem": "put item successfully",
    "updateItem": "update item successfully",
    "deleteItem": "delete item successfully",
}


class DynamoDBResource(OptionsModel):
    region: NonEmptyStr
    access_key_id: NonEmptyStr = Field(alias="accessKeyID")
    secret_access_key: NonEmptyStr


class DynamoDBAction(OptionsModel):
    method: Literal["query", "scan", "putItem", "getItem", "updateItem", "deleteItem"]
    table: NonEmptyStr
    use_json: bool = False
    parameters: str = ""
    struct_params: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _json_parameters(self):
        if self.use_json:
            params_from_json(self.parameters)
        return self


def params_from_json(text: str) -> Dict[str, Any]:
    if not text.strip():
        return {}
    try:
        parsed = json.loads(text, parse_float=Decimal)
    except ValueError as exc:
        raise ValueError(f"parameters is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("parameters must be a JSON object")
    return parsed


def to_decimal(value: Any) -> Any:
    """DynamoDB rejects floats; carry them as Decimal."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_decimal(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_decimal(v) for v in value]
    return value


def from_decimal(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_decimal(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [from_decimal(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return [from_decimal(v) for v in sorted(value, key=repr)]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _lookup(params: Dict[str, Any], name: str) -> Any:
    for key in (name, name[:1].lower() + name[1:]):
        if key in params:
            return params[key]
    return None


def build_request(method: str, table: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """Shape ``params`` (camelCase or PascalCase keys) into low-level client kwargs."""
    types = require_module("boto3.dynamodb.types", "aws")
    serializer = types.TypeSerializer()
    request: Dict[str, Any] = {"TableName": table}
    for name, encoded in METHOD_FIELDS[method].items():
        value = _lookup(params, name)
        if value in (None, "", {}, 0):
            continue
        if encoded:
            if not isinstance(value, dict):
                raise InvalidActionError(f"dynamodb: {name} must be an object")
            value = {k: serializer.serialize(to_decimal(v)) for k, v in value.items()}
        elif name == "Limit":
            value = int(value)
        request[name] = value
    return request


def decode_item(item: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    types = require_module("boto3.dynamodb.types", "aws")
    deserializer = types.TypeDeserializer()
    return {k: from_decimal(deserializer.deserialize(v)) for k, v in (item or {}).items()}


@register_connector("dynamodb")
class DynamoDBConnector(Connector):
    resource_model = DynamoDBResource
    action_model = DynamoDBAction

    @contextlib.contextmanager
    def _dynamodb(self, res: DynamoDBResource) -> Iterator[Any]:
        boto3 = require_module("boto3", "aws")
        client = boto3.client(
            "dynamodb",
            region_name=res.region,
            aws_access_key_id=res.access_key_id,
            aws_secret_access_key=res.secret_access_key,
        )
        self.log.handle_opened("dynamodb", region=res.region)
        try:
            yield client
        finally:
            client.close()
            self.log.handle_released("dynamodb", region=res.region)

    def _call(self, what: str, fn, **kwargs: Any) -> Any:
        botocore_exc = require_module("botocore.exceptions", "aws")
        try:
            return fn(**kwargs)
        except botocore_exc.EndpointConnectionError as exc:
            raise ConnectFailedError(f"dynamodb {what}: {exc}") from exc
        except botocore_exc.ParamValidationError as exc:
            raise InvalidActionError(f"dynamodb {what}: {exc}") from exc
        except (botocore_exc.BotoCoreError, botocore_exc.ClientError) as exc:
            raise OperationFailedError(f"dynamodb {what}: {exc}") from exc

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._dynamodb(res) as client:
            self._call("list tables", client.list_tables)
        return ConnectionResult(success=True)

    def get_meta_info(self, options) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self._dynamodb(res) as client:
            resp = self._call("list tables", client.list_tables)
        return MetaInfoResult(success=True, schema={"tables": list(resp.get("TableNames", []))})

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: DynamoDBResource = self.decode_resource(resource_options)
        action: DynamoDBAction = self.decode_action(action_options)
        if action.use_json:
            try:
                params = params_from_json(action.parameters)
            except ValueError as exc:
                raise InvalidActionError(f"dynamodb: {exc}") from exc
        else:
            params = action.struct_params
        request = build_request(action.method, action.table, params)
        with self._dynamodb(res) as client:
            if action.method in ("query", "scan"):
                fn = client.query if action.method == "query" else client.scan
                out = self._call(action.method, fn, **request)
                rows: List[Dict[str, Any]] = [decode_item(item) for item in out.get("Items", [])]
                return RuntimeResult(success=True, rows=rows)
            if action.method == "getItem":
                out = self._call("get item", client.get_item, **request)
                return RuntimeResult(success=True, rows=[decode_item(out.get("Item"))])
            fn = {"putItem": client.put_item, "updateItem": client.update_item, "deleteItem": client.delete_item}[action.method]
            self._call(action.method, fn, **request)
        return RuntimeResult(success=True, rows=[{"message": WRITE_MESSAGES[action.method]}])


__all__ = ["DynamoDBConnector", "build_request", "decode_item"]
