from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, List, Literal, Optional, Tuple
from urllib.parse import unquote

import httpx
from pydantic import Field, field_validator, model_validator

from ..core.errors import InvalidActionError
from ..core.options import NonEmptyStr, OptionsModel, pairs_to_dict
from ..core.results import RuntimeResult
from ..template import render_template
from .http import HttpConnector, body_rows, response_extra
from .registry import register_connector
from .sql.tls import build_ssl_context

AUTH_NONE = "none"
AUTH_BASIC = "basic"
AUTH_BEARER = "bearer"
AUTH_DIGEST = "digest"

BODY_NONE = "none"
BODY_RAW = "raw"
BODY_FORM_DATA = "form-data"
BODY_URLENCODED = "x-www-form-urlencoded"
BODY_BINARY = "binary"

RAW_CONTENT_TYPES = {
    "json": "application/json",
    "xml": "application/xml",
    "html": "text/html",
    "text": "text/plain",
    "javascript": "application/javascript",
}


class RestCerts(OptionsModel):
    mode: Literal["verify-ca", "verify-full", "skip"] = "verify-full"
    ca_cert: str = ""
    client_cert: str = ""
    client_key: str = ""


class RestResource(OptionsModel):
    base_url: NonEmptyStr = Field(alias="baseURL")
    url_params: Optional[List[Dict[str, Any]]] = None
    headers: Optional[List[Dict[str, Any]]] = None
    cookies: Optional[List[Dict[str, Any]]] = None
    authentication: Literal["none", "basic", "bearer", "digest"] = AUTH_NONE
    auth_content: Optional[Dict[str, Any]] = None
    self_signed_cert: bool = False
    certs: Optional[RestCerts] = None

    @model_validator(mode="after")
    def _auth_content_matches(self):
        content = self.auth_content or {}
        if self.authentication in (AUTH_BASIC, AUTH_DIGEST):
            if not content.get("username") or "password" not in content:
                raise ValueError(f"{self.authentication} authentication requires username and password")
        elif self.authentication == AUTH_BEARER and not content.get("token"):
            raise ValueError("bearer authentication requires a token")
        if self.self_signed_cert:
            if self.certs is None:
                raise ValueError("certs are required when selfSignedCert is set")
            if self.certs.mode != "skip" and not self.certs.ca_cert:
                raise ValueError("caCert is required unless certificate verification is skipped")
        return self


class RestAction(OptionsModel):
    url: str = ""
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
    body_type: Literal["none", "raw", "form-data", "x-www-form-urlencoded", "binary"] = BODY_NONE
    body: Any = None
    url_params: Optional[List[Dict[str, Any]]] = None
    headers: Optional[List[Dict[str, Any]]] = None
    cookies: Optional[List[Dict[str, Any]]] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


def merge_pairs(resource_items: Any, action_items: Any, context: Dict[str, Any]) -> Dict[str, str]:
    """Resource pairs overlaid by action pairs; values rendered with ``context``."""
    merged = pairs_to_dict(resource_items)
    merged.update(pairs_to_dict(action_items))
    return {k: render_template("" if v is None else str(v), context) for k, v in merged.items()}


def decode_base64(data: Any, what: str) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("ascii", errors="replace")
    if not isinstance(data, str):
        raise InvalidActionError(f"{what} must be a base64 string")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidActionError(f"{what} is not valid base64") from exc


def _json_body(content: str) -> Tuple[str, Any]:
    text = content
    try:
        unquoted = unquote(content)
        json.loads(unquoted)
        text = unquoted
    except ValueError:
        pass
    try:
        parsed = json.loads(text)
    except ValueError:
        return "content", text.encode("utf-8")
    if isinstance(parsed, str):
        try:
            parsed = json.loads(parsed)
        except ValueError:
            return "content", text.encode("utf-8")
    if isinstance(parsed, (dict, list)):
        return "json", parsed
    return "content", text.encode("utf-8")


def build_body(body_type: str, body: Any, context: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Return ``(request kwargs, default headers)`` for the action body."""
    if body_type == BODY_NONE or body is None:
        return {}, {}
    if body_type == BODY_RAW:
        if not isinstance(body, dict):
            raise InvalidActionError("raw body must be an object with type and content")
        kind = str(body.get("type") or "text")
        if kind not in RAW_CONTENT_TYPES:
            raise InvalidActionError(f"unsupported raw body type {kind!r}")
        content = body.get("content")
        if not isinstance(content, str):
            content = json.dumps(content) if content is not None else ""
        content = render_template(content, context, json_escape=(kind == "json"))
        headers = {"Content-Type": RAW_CONTENT_TYPES[kind]}
        if kind == "json":
            key, value = _json_body(content)
            return {key: value}, headers
        return {"content": content.encode("utf-8")}, headers
    if body_type == BODY_BINARY:
        return {"content": decode_base64(body, "binary body")}, {"Content-Type": "application/octet-stream"}
    if body_type == BODY_URLENCODED:
        return {"data": merge_pairs(body, None, context)}, {}
    if body_type == BODY_FORM_DATA:
        files: List[Tuple[str, Tuple[Optional[str], Any]]] = []
        for item in body or []:
            if not isinstance(item, dict) or not item.get("key"):
                continue
            key = str(item["key"])
            if item.get("type") == "file":
                value = item.get("value") or {}
                if not isinstance(value, dict):
                    raise InvalidActionError(f"form-data file field {key!r} must be an object")
                files.append((key, (value.get("filename") or key, decode_base64(value.get("data", ""), key))))
            else:
                raw = item.get("value")
                text = raw if isinstance(raw, str) else json.dumps(raw)
                files.append((key, (None, render_template(text, context).encode("utf-8"))))
        return {"files": files}, {}
    raise InvalidActionError(f"unsupported body type {body_type!r}")


@register_connector("restapi")
class RestAPIConnector(HttpConnector):
    resource_model = RestResource
    action_model = RestAction

    def _auth(self, res: RestResource) -> Tuple[Optional[httpx.Auth], Dict[str, str]]:
        content = res.auth_content or {}
        if res.authentication == AUTH_BASIC:
            return httpx.BasicAuth(str(content.get("username", "")), str(content.get("password", ""))), {}
        if res.authentication == AUTH_DIGEST:
            return httpx.DigestAuth(str(content.get("username", "")), str(content.get("password", ""))), {}
        if res.authentication == AUTH_BEARER:
            return None, {"Authorization": f"Bearer {content.get('token', '')}"}
        return None, {}

    def _verify(self, res: RestResource) -> Any:
        if not res.self_signed_cert or res.certs is None:
            return True
        certs = res.certs
        return build_ssl_context(
            ca_cert=certs.ca_cert or None,
            client_cert=certs.client_cert or None,
            client_key=certs.client_key or None,
            verify=certs.mode != "skip",
            check_hostname=certs.mode == "verify-full",
        )

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: RestResource = self.decode_resource(resource_options)
        action: RestAction = self.decode_action(action_options)
        ctx = action.context

        url = res.base_url + render_template(action.url, ctx)
        params = merge_pairs(res.url_params, action.url_params, ctx)
        cookies = merge_pairs(res.cookies, action.cookies, ctx)
        auth, auth_headers = self._auth(res)

        body_kwargs: Dict[str, Any] = {}
        default_headers: Dict[str, str] = {}
        if action.method != "GET":
            body_kwargs, default_headers = build_body(action.body_type, action.body, ctx)

        headers = dict(default_headers)
        headers.update(auth_headers)
        headers.update(merge_pairs(res.headers, action.headers, ctx))

        with self.http_client(verify=self._verify(res), cookies=cookies) as client:
            resp = self.send(client, action.method, url, params=params, headers=headers, auth=auth, **body_kwargs)
        return RuntimeResult(success=True, rows=body_rows(resp.content), extra=response_extra(resp))


__all__ = ["RestAPIConnector", "RestResource", "RestAction", "build_body", "merge_pairs", "decode_base64"]
