from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

import httpx
from pydantic import Field, model_validator

from ..core.errors import ConnectFailedError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import ConnectionResult, RuntimeResult
from ..template import exact_placeholder, render_template
from .http import HttpConnector, response_extra
from .registry import register_connector
from .restapi import merge_pairs

AUTH_NONE = "none"
AUTH_BASIC = "basic"
AUTH_BEARER = "bearer"
AUTH_APIKEY = "apiKey"

TYPENAME_QUERY = "{__typename}"


class GraphQLResource(OptionsModel):
    base_url: NonEmptyStr = Field(alias="baseURL")
    url_params: Optional[List[Dict[str, Any]]] = None
    headers: Optional[List[Dict[str, Any]]] = None
    cookies: Optional[List[Dict[str, Any]]] = None
    authentication: Literal["none", "basic", "bearer", "apiKey"] = AUTH_NONE
    auth_content: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _auth_content_matches(self):
        content = self.auth_content or {}
        if self.authentication == AUTH_BASIC and not content.get("username"):
            raise ValueError("basic authentication requires a username")
        if self.authentication == AUTH_BEARER and not content.get("bearerToken"):
            raise ValueError("bearer authentication requires bearerToken")
        if self.authentication == AUTH_APIKEY and not content.get("value"):
            raise ValueError("apiKey authentication requires a value")
        return self


class GraphQLAction(OptionsModel):
    query: NonEmptyStr
    variables: Optional[List[Dict[str, Any]]] = None
    headers: Optional[List[Dict[str, Any]]] = None
    context: Dict[str, Any] = Field(default_factory=dict)


def collapse_variables(items: Any, context: Dict[str, Any]) -> Dict[str, Any]:
    """Turn ``[{key, value}]`` into a mapping, rendering string values.

    A value that is exactly one placeholder takes the raw context value
    (None when the name is unknown).
    """
    out: Dict[str, Any] = {}
    for item in items or []:
        if not isinstance(item, dict):
            continue
        key = render_template(str(item.get("key") or ""), context)
        if not key:
            continue
        value = item.get("value")
        if isinstance(value, str):
            name = exact_placeholder(value)
            value = context.get(name) if name is not None else render_template(value, context)
        out[key] = value
    return out


@register_connector("graphql")
class GraphQLConnector(HttpConnector):
    resource_model = GraphQLResource
    action_model = GraphQLAction

    def _post(
        self,
        res: GraphQLResource,
        query: str,
        variables: Optional[Dict[str, Any]],
        context: Dict[str, Any],
        action_headers: Any = None,
    ) -> httpx.Response:
        content = res.auth_content or {}
        params = merge_pairs(res.url_params, None, context)
        headers = merge_pairs(res.headers, action_headers, context)
        cookies = merge_pairs(res.cookies, None, context)
        auth: Optional[httpx.Auth] = None
        if res.authentication == AUTH_BASIC:
            auth = httpx.BasicAuth(str(content.get("username", "")), str(content.get("password", "")))
        elif res.authentication == AUTH_BEARER:
            headers["Authorization"] = f"Bearer {content.get('bearerToken', '')}"
        elif res.authentication == AUTH_APIKEY:
            if content.get("addTo") == "urlParams":
                params[str(content.get("key", ""))] = str(content.get("value", ""))
            else:
                prefix = str(content.get("headerPrefix") or "").strip()
                value = str(content.get("value", ""))
                headers["Authorization"] = f"{prefix} {value}" if prefix else value
        headers["Content-Type"] = "application/json"
        with self.http_client(cookies=cookies) as client:
            return self.send(
                client,
                "POST",
                res.base_url,
                params=params,
                headers=headers,
                auth=auth,
                json={"query": query, "variables": variables},
            )

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        resp = self._post(res, TYPENAME_QUERY, None, {})
        if resp.is_error:
            raise ConnectFailedError(f"graphql: probe returned {resp.status_code}")
        return ConnectionResult(success=True)

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: GraphQLResource = self.decode_resource(resource_options)
        action: GraphQLAction = self.decode_action(action_options)
        variables = collapse_variables(action.variables, action.context)
        resp = self._post(res, action.query, variables, action.context, action.headers)
        if resp.is_error:
            raise OperationFailedError(f"graphql: server returned {resp.status_code}: {resp.text}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise OperationFailedError("graphql: response is not JSON") from exc
        return RuntimeResult(
            success=True,
            rows=[body] if isinstance(body, dict) else [],
            extra=response_extra(resp),
        )


__all__ = ["GraphQLConnector", "collapse_variables"]
