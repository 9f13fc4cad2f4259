from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import Field, model_validator

from ..core.errors import InvalidResourceError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import Row, RuntimeResult
from .http import HttpConnector, header_lists
from .registry import register_connector
from .restapi import decode_base64

HF_API_ADDRESS = "https://api-inference.huggingface.co/models/"

INPUT_PAIRS = "pairs"
INPUT_TEXT = "text"
INPUT_JSON = "json"
INPUT_BINARY = "binary"

# camelCase key -> (wire key, kind)
DETAIL_PARAMS: Dict[str, Tuple[str, str]] = {
    "useCache": ("use_cache", "bool"),
    "waitForModel": ("wait_for_model", "bool"),
    "minLength": ("min_length", "int"),
    "maxLength": ("max_length", "int"),
    "topK": ("top_k", "int"),
    "topP": ("top_p", "float"),
    "temperature": ("temperature", "float"),
    "repetitionPenalty": ("repetition_penalty", "float"),
    "maxTime": ("max_time", "float"),
}


class HuggingFaceResource(OptionsModel):
    authentication: str = ""
    auth_content: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _bearer_token(self):
        if self.authentication != "bearer" or not (self.auth_content or {}).get("token"):
            raise ValueError("authentication error")
        return self


class HFInputs(OptionsModel):
    type: Literal["pairs", "text", "json", "binary"]
    content: Any = None


class HFParams(OptionsModel):
    inputs: HFInputs
    with_detail_params: bool = False
    detail_params: Optional[List[Dict[str, Any]]] = None


class HuggingFaceAction(OptionsModel):
    model_id: NonEmptyStr = Field(alias="modelID")
    params: HFParams


def _coerce(value: Any, kind: str) -> Tuple[bool, Any]:
    if kind == "bool":
        return isinstance(value, bool), value
    if isinstance(value, bool) or value is None:
        return False, None
    if kind == "int":
        if isinstance(value, int):
            return True, value
        if isinstance(value, float) and value.is_integer():
            return True, int(value)
        return False, None
    if isinstance(value, (int, float)):
        return True, float(value)
    return False, None


def build_detail_params(pairs: Any) -> Dict[str, Any]:
    """Translate explicitly supplied detail parameters to their wire names."""
    out: Dict[str, Any] = {}
    for pair in pairs or []:
        if not isinstance(pair, dict) or "value" not in pair:
            continue
        spec = DETAIL_PARAMS.get(str(pair.get("key")))
        if spec is None:
            continue
        wire, kind = spec
        ok, value = _coerce(pair["value"], kind)
        if ok:
            out[wire] = value
    return out


def build_request(params: HFParams) -> Dict[str, Any]:
    """httpx request kwargs for the inference call."""
    detail = build_detail_params(params.detail_params) if params.with_detail_params else {}
    kind = params.inputs.type
    if kind == INPUT_BINARY:
        return {"content": decode_base64(params.inputs.content, "binary inputs")}
    if kind == INPUT_PAIRS:
        inputs: Any = {}
        for pair in params.inputs.content or []:
            if isinstance(pair, dict) and pair.get("key"):
                inputs[str(pair["key"])] = pair.get("value")
    else:
        inputs = params.inputs.content
    body: Dict[str, Any] = {"inputs": inputs}
    if detail:
        body["parameters"] = detail
    return {"json": body}


def inference_rows(content: bytes) -> List[Row]:
    try:
        parsed = json.loads(content)
    except (ValueError, UnicodeDecodeError):
        return []
    if isinstance(parsed, dict):
        return [parsed]
    if isinstance(parsed, list):
        if len(parsed) == 1 and isinstance(parsed[0], list) and all(isinstance(i, dict) for i in parsed[0]):
            return list(parsed[0])
        if all(isinstance(i, dict) for i in parsed):
            return list(parsed)
    return []


def raw_body(content: bytes) -> str:
    """The body as base64 text, unless it already is base64."""
    try:
        base64.b64decode(content, validate=True)
        return content.decode("ascii")
    except (binascii.Error, ValueError):
        return base64.b64encode(content).decode("ascii")


@register_connector("huggingface")
class HuggingFaceConnector(HttpConnector):
    resource_model = HuggingFaceResource
    action_model = HuggingFaceAction

    def validate_resource_options(self, options):
        try:
            return super().validate_resource_options(options)
        except InvalidResourceError as exc:
            raise InvalidResourceError("authentication error") from exc

    def validate_action_options(self, options):
        action = self.decode_action(options)
        build_request(action.params)
        return super().validate_action_options(options)

    def target(self, res: Any, action: HuggingFaceAction) -> Tuple[str, str]:
        return HF_API_ADDRESS + action.model_id, str((res.auth_content or {}).get("token", ""))

    def run(self, resource_options, action_options) -> RuntimeResult:
        res = self.decode_resource(resource_options)
        action: HuggingFaceAction = self.decode_action(action_options)
        url, token = self.target(res, action)
        request = build_request(action.params)
        with self.http_client() as client:
            resp = self.send(client, "POST", url, headers={"Authorization": f"Bearer {token}"}, **request)
        return RuntimeResult(
            success=True,
            rows=inference_rows(resp.content),
            extra={
                "raw": raw_body(resp.content),
                "headers": header_lists(resp.headers),
                "statusCode": resp.status_code,
                "statusText": f"{resp.status_code} {resp.reason_phrase}",
            },
        )


class HFEndpointResource(OptionsModel):
    endpoint: NonEmptyStr
    token: NonEmptyStr


class HFEndpointAction(OptionsModel):
    model_id: str = Field(default="", alias="modelID")
    params: HFParams


@register_connector("hfendpoint")
class HFEndpointConnector(HuggingFaceConnector):
    resource_model = HFEndpointResource
    action_model = HFEndpointAction

    def validate_resource_options(self, options):
        return HttpConnector.validate_resource_options(self, options)

    def target(self, res: Any, action: Any) -> Tuple[str, str]:
        return res.endpoint, res.token


__all__ = [
    "HuggingFaceConnector",
    "HFEndpointConnector",
    "build_detail_params",
    "build_request",
    "inference_rows",
    "raw_body",
]
