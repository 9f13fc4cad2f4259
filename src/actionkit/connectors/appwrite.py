from __future__ import annotations

from typing import Any, Dict, List, Literal
from urllib.parse import quote

import httpx
from pydantic import Field

from ..core.errors import ConnectFailedError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel, decode_action
from ..core.results import ConnectionResult, MetaInfoResult, RuntimeResult
from .http import HttpConnector
from .registry import register_connector


class AppwriteResource(OptionsModel):
    host: NonEmptyStr
    project_id: NonEmptyStr = Field(alias="projectID")
    database_id: NonEmptyStr = Field(alias="databaseID")
    api_key: NonEmptyStr = Field(alias="apiKey")


class AppwriteAction(OptionsModel):
    method: Literal["list", "create", "get", "update", "delete"]
    opts: Dict[str, Any] = Field(default_factory=dict)


class Filter(OptionsModel):
    attribute: str = ""
    operator: str = ""
    value: str = ""


class Order(OptionsModel):
    attribute: str = ""
    value: str = ""


class ListOpts(OptionsModel):
    collection_id: NonEmptyStr = Field(alias="collectionID")
    filter: List[Filter] = Field(default_factory=list)
    order_by: List[Order] = Field(default_factory=list)
    limit: int = 0


class DocOpts(OptionsModel):
    collection_id: NonEmptyStr = Field(alias="collectionID")
    document_id: NonEmptyStr = Field(alias="documentID")
    data: Dict[str, Any] = Field(default_factory=dict)


def build_queries(opts: ListOpts) -> List[str]:
    """Filters, then orderings, then the limit, in Appwrite's query-string syntax."""
    queries: List[str] = []
    for f in opts.filter:
        if f.attribute:
            queries.append(f"{f.operator}({f.attribute}, {f.value})")
    for o in opts.order_by:
        if not o.attribute:
            continue
        if o.value == "asc":
            queries.append(f"orderAsc({o.attribute})")
        elif o.value == "desc":
            queries.append(f"orderDesc({o.attribute})")
    queries.append(f"limit({opts.limit})")
    return queries


def strip_system_prefix(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Drop the ``$`` from Appwrite system attribute names (``$id`` -> ``id``)."""
    return {k.replace("$", ""): v for k, v in doc.items()}


@register_connector("appwrite")
class AppwriteConnector(HttpConnector):
    resource_model = AppwriteResource
    action_model = AppwriteAction

    def _client(self, res: AppwriteResource):
        return self.http_client(
            base_url=res.host.rstrip("/"),
            headers={
                "X-Appwrite-Project": res.project_id,
                "X-Appwrite-Key": res.api_key,
                "Content-Type": "application/json",
            },
        )

    def _documents(self, res: AppwriteResource, collection_id: str) -> str:
        return f"/databases/{quote(res.database_id, safe='')}/collections/{quote(collection_id, safe='')}/documents"

    def _request(self, client: httpx.Client, method: str, url: str, expected: int, **kwargs: Any) -> httpx.Response:
        resp = self.send(client, method, url, **kwargs)
        if resp.status_code != expected:
            raise OperationFailedError(f"appwrite: {method} {url} returned {resp.status_code}: {resp.text}")
        return resp

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            resp = self.send(client, "GET", f"/databases/{quote(res.database_id, safe='')}")
        if resp.status_code != 200:
            raise ConnectFailedError(f"appwrite: {resp.text}")
        return ConnectionResult(success=True)

    def get_meta_info(self, options) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            body = self.send_json(client, "GET", f"/databases/{quote(res.database_id, safe='')}/collections") or {}
        colls = body.get("collections") if isinstance(body, dict) else None
        if not isinstance(colls, list):
            raise OperationFailedError("appwrite: invalid response")
        return MetaInfoResult(success=True, schema={"collections": [{"id": c.get("$id")} for c in colls]})

    def validate_action_options(self, options):
        action: AppwriteAction = self.decode_action(options)
        decode_action(ListOpts if action.method == "list" else DocOpts, action.opts)
        return super().validate_action_options(options)

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: AppwriteResource = self.decode_resource(resource_options)
        action: AppwriteAction = self.decode_action(action_options)
        if action.method == "list":
            opts = decode_action(ListOpts, action.opts)
            with self._client(res) as client:
                resp = self._request(
                    client, "GET", self._documents(res, opts.collection_id), 200,
                    params=[("queries[]", q) for q in build_queries(opts)],
                )
            body = _json(resp)
            docs = body.get("documents")
            if isinstance(docs, list):
                body["documents"] = [strip_system_prefix(d) if isinstance(d, dict) else d for d in docs]
            return RuntimeResult(success=True, rows=[body])

        doc = decode_action(DocOpts, action.opts)
        url = self._documents(res, doc.collection_id)
        item_url = f"{url}/{quote(doc.document_id, safe='')}"
        with self._client(res) as client:
            if action.method == "get":
                resp = self._request(client, "GET", item_url, 200)
                return RuntimeResult(success=True, rows=[strip_system_prefix(_json(resp))])
            if action.method == "create":
                resp = self._request(
                    client, "POST", url, 201,
                    json={"documentId": doc.document_id, "data": doc.data, "permissions": []},
                )
                message = "Document created successfully."
            elif action.method == "update":
                resp = self._request(client, "PATCH", item_url, 200, json={"data": doc.data})
                message = "Document updated successfully."
            else:
                resp = self._request(client, "DELETE", item_url, 204)
                message = "Document deleted successfully."
        return RuntimeResult(success=True, rows=[{"message": message, "success": True, "result": resp.text}])


def _json(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as exc:
        raise OperationFailedError("appwrite: response is not JSON") from exc
    if not isinstance(body, dict):
        raise OperationFailedError("appwrite: unexpected response shape")
    return body


__all__ = ["AppwriteConnector", "build_queries", "strip_system_prefix"]
