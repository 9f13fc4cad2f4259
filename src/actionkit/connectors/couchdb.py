from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import quote

import httpx
from pydantic import Field

from ..core.errors import ConnectFailedError, InvalidActionError
from ..core.options import NonEmptyStr, OptionsModel
from ..core.results import ConnectionResult, MetaInfoResult, RuntimeResult
from .http import HttpConnector
from .registry import register_connector

END_KEY_SUFFIX = "\ufff0"


class CouchDBResource(OptionsModel):
    host: NonEmptyStr
    port: int = Field(gt=0)
    username: NonEmptyStr
    password: NonEmptyStr
    ssl: bool = False


class CouchDBAction(OptionsModel):
    method: Literal["listRecords", "retrieveRecord", "createRecord", "updateRecord", "deleteRecord", "find", "getView"]
    database: NonEmptyStr
    opts: Dict[str, Any] = Field(default_factory=dict)


def _number(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _flag(value: Any) -> str:
    return "true" if value is True else "false"


def _doc_id(opts: Dict[str, Any], key: str = "_id", what: str = "doc id") -> str:
    value = opts.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidActionError(f"{what} is required")
    return value


def view_path(view_url: str) -> str:
    """``_design/<ddoc>/_view/<view>`` -> path segment under the database."""
    parts = view_url.strip("/").split("/")
    if len(parts) != 4:
        raise InvalidActionError("invalid view url")
    return f"_design/{quote(parts[1], safe='')}/_view/{quote(parts[3], safe='')}"


def view_rows(body: Dict[str, Any], include_docs: bool, rev_key: str) -> Dict[str, Any]:
    rows: List[Dict[str, Any]] = []
    for row in body.get("rows", []) or []:
        value = row.get("value")
        item: Dict[str, Any] = {"_id": row.get("id"), "_rev": value.get(rev_key) if isinstance(value, dict) else None}
        if include_docs:
            item["doc"] = row.get("doc")
        rows.append(item)
    return {"rows": rows, "total_rows": body.get("total_rows", 0), "offset": body.get("offset", 0)}


@register_connector("couchdb")
class CouchDBConnector(HttpConnector):
    resource_model = CouchDBResource
    action_model = CouchDBAction

    @staticmethod
    def base_url(res: CouchDBResource) -> str:
        scheme = "https" if res.ssl else "http"
        return f"{scheme}://{res.host}:{res.port}"

    def _client(self, res: CouchDBResource):
        return self.http_client(base_url=self.base_url(res), auth=httpx.BasicAuth(res.username, res.password))

    def test_connection(self, options) -> ConnectionResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            resp = self.send(client, "GET", "/")
        if resp.is_error:
            raise ConnectFailedError(f"couchdb: server returned {resp.status_code}")
        return ConnectionResult(success=True)

    def get_meta_info(self, options) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            dbs = self.send_json(client, "GET", "/_all_dbs")
        return MetaInfoResult(success=True, schema={"databases": dbs or []})

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: CouchDBResource = self.decode_resource(resource_options)
        action: CouchDBAction = self.decode_action(action_options)
        db = "/" + quote(action.database, safe="")
        opts = dict(action.opts)
        with self._client(res) as client:
            row = getattr(self, "_m_" + action.method.lower())(client, db, opts)
        return RuntimeResult(success=True, rows=[row])

    def _m_listrecords(self, client: httpx.Client, db: str, opts: Dict[str, Any]) -> Dict[str, Any]:
        include_docs = opts.get("includeDocs") is True
        params: Dict[str, Any] = {"include_docs": _flag(include_docs), "descending": _flag(opts.get("descendingOrder"))}
        for key in ("limit", "skip"):
            n = _number(opts.get(key))
            if n is not None:
                params[key] = n
        body = self.send_json(client, "GET", f"{db}/_all_docs", params=params) or {}
        return view_rows(body, include_docs, "rev")

    def _m_retrieverecord(self, client: httpx.Client, db: str, opts: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = _doc_id(opts)
        return self.send_json(client, "GET", f"{db}/{quote(doc_id, safe='')}") or {}

    def _m_createrecord(self, client: httpx.Client, db: str, opts: Dict[str, Any]) -> Dict[str, Any]:
        record = opts.get("record")
        if not isinstance(record, dict):
            raise InvalidActionError("record must be an object")
        body = self.send_json(client, "POST", db, json=record) or {}
        return {"_id": body.get("id"), "_rev": body.get("rev")}

    def _m_updaterecord(self, client: httpx.Client, db: str, opts: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = _doc_id(opts)
        record = dict(opts.get("record") or {})
        record["_rev"] = opts.get("_rev", "")
        body = self.send_json(client, "PUT", f"{db}/{quote(doc_id, safe='')}", json=record) or {}
        return {"message": f"updated {doc_id}, new revision ID: {body.get('rev', '')}"}

    def _m_deleterecord(self, client: httpx.Client, db: str, opts: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = _doc_id(opts)
        rev = _doc_id(opts, "_rev", "revision id")
        self.send_json(client, "DELETE", f"{db}/{quote(doc_id, safe='')}", params={"rev": rev})
        return {"message": f"deleted {doc_id} document"}

    def _m_find(self, client: httpx.Client, db: str, opts: Dict[str, Any]) -> Dict[str, Any]:
        query = opts.get("mangoQuery")
        if isinstance(query, str):
            try:
                query = json.loads(query)
            except ValueError as exc:
                raise InvalidActionError("mangoQuery is not valid JSON") from exc
        if not isinstance(query, dict):
            raise InvalidActionError("mangoQuery must be an object")
        body = self.send_json(client, "POST", f"{db}/_find", json=query) or {}
        return {"docs": body.get("docs", []), "bookmark": body.get("bookmark", ""), "warning": body.get("warning", "")}

    def _m_getview(self, client: httpx.Client, db: str, opts: Dict[str, Any]) -> Dict[str, Any]:
        path = view_path(str(opts.get("viewurl") or ""))
        include_docs = opts.get("includeDocs") is True
        params: Dict[str, Any] = {"include_docs": _flag(include_docs)}
        if opts.get("startkey"):
            params["startkey"] = json.dumps(opts["startkey"])
        if opts.get("endkey"):
            params["endkey"] = json.dumps(str(opts["endkey"]) + END_KEY_SUFFIX)
        for key in ("limit", "skip"):
            n = _number(opts.get(key))
            if n is not None:
                params[key] = n
        body = self.send_json(client, "GET", f"{db}/{path}", params=params) or {}
        return view_rows(body, include_docs, "_rev")


__all__ = ["CouchDBConnector", "view_path", "view_rows"]
