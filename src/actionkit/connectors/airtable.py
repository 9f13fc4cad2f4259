from __future__ import annotations

from typing import Any, Dict, List, Literal
from urllib.parse import quote

import httpx
from pydantic import Field, model_validator

from ..core.errors import InvalidActionError
from ..core.options import NonEmptyStr, OptionsModel, decode_action
from ..core.results import RuntimeResult
from .http import HttpConnector
from .registry import register_connector

AIRTABLE_API = "https://api.airtable.com/v0"
DEFAULT_PAGE_SIZE = 100
MAX_BATCH = 10


class AirtableResource(OptionsModel):
    authentication_type: Literal["personalToken", "apiKey"]
    authentication_config: Dict[str, str]

    @model_validator(mode="after")
    def _credential_present(self):
        key = "token" if self.authentication_type == "personalToken" else "apiKey"
        if not self.authentication_config.get(key):
            raise ValueError(f"authenticationConfig.{key} is required")
        return self

    @property
    def bearer(self) -> str:
        key = "token" if self.authentication_type == "personalToken" else "apiKey"
        return self.authentication_config[key]


class BaseConfig(OptionsModel):
    base_id: NonEmptyStr
    table_name: NonEmptyStr


class AirtableAction(OptionsModel):
    method: Literal["list", "get", "create", "update", "bulkUpdate", "delete", "bulkDelete"]
    base_config: BaseConfig
    config: Dict[str, Any]


class SortObject(OptionsModel):
    field: str = ""
    direction: Literal["asc", "desc"] = "asc"


class ListConfig(OptionsModel):
    fields: List[str] = Field(default_factory=list)
    filter_by_formula: str = ""
    max_records: int = -1
    page_size: int = 0
    sort: List[SortObject] = Field(default_factory=list)
    view: str = ""
    cell_format: str = "json"
    time_zone: str = ""
    user_locale: str = ""
    offset: str = ""

    @model_validator(mode="after")
    def _string_format_needs_locale(self):
        if self.cell_format == "string":
            if not self.time_zone and not self.user_locale:
                raise ValueError("missing timezone or user locale")
        else:
            self.cell_format = "json"
        return self


class RecordID(OptionsModel):
    record_id: NonEmptyStr


class RecordsConfig(OptionsModel):
    records: List[Dict[str, Any]] = Field(min_length=1, max_length=MAX_BATCH)


class UpdateConfig(OptionsModel):
    record_id: NonEmptyStr
    record: Dict[str, Any]


class BulkDeleteConfig(OptionsModel):
    record_ids: List[NonEmptyStr] = Field(min_length=1, max_length=MAX_BATCH)


CONFIG_MODELS = {
    "list": ListConfig,
    "get": RecordID,
    "create": RecordsConfig,
    "update": UpdateConfig,
    "bulkUpdate": RecordsConfig,
    "delete": RecordID,
    "bulkDelete": BulkDeleteConfig,
}


def list_body(cfg: ListConfig) -> Dict[str, Any]:
    body: Dict[str, Any] = {"pageSize": cfg.page_size if cfg.page_size > 0 else DEFAULT_PAGE_SIZE}
    if cfg.fields:
        body["fields"] = cfg.fields
    if cfg.filter_by_formula:
        body["filterByFormula"] = cfg.filter_by_formula
    if cfg.max_records > -1:
        body["maxRecords"] = cfg.max_records
    body["sort"] = [{"field": s.field, "direction": s.direction} for s in cfg.sort if s.field]
    if cfg.view:
        body["view"] = cfg.view
    body["cellFormat"] = cfg.cell_format
    if cfg.time_zone:
        body["timeZone"] = cfg.time_zone
    if cfg.user_locale:
        body["userLocale"] = cfg.user_locale
    if cfg.offset:
        body["offset"] = cfg.offset
    return body


def response_row(resp: httpx.Response) -> Dict[str, Any]:
    """Airtable replies become one row; non-200 bodies carry the HTTP status alongside."""
    try:
        body = resp.json()
    except ValueError:
        return {"message": f"Parse Airtable response error: {resp.text}"}
    row = body if isinstance(body, dict) else {"result": body}
    if resp.status_code != 200:
        row["status"] = f"{resp.status_code} {resp.reason_phrase}"
    return row


@register_connector("airtable")
class AirtableConnector(HttpConnector):
    resource_model = AirtableResource
    action_model = AirtableAction

    def validate_action_options(self, options):
        action: AirtableAction = self.decode_action(options)
        decode_action(CONFIG_MODELS[action.method], action.config)
        return super().validate_action_options(options)

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: AirtableResource = self.decode_resource(resource_options)
        action: AirtableAction = self.decode_action(action_options)
        cfg = decode_action(CONFIG_MODELS[action.method], action.config)
        table_url = (
            f"{AIRTABLE_API}/{quote(action.base_config.base_id, safe='')}/{quote(action.base_config.table_name, safe='')}"
        )
        headers = {"Authorization": f"Bearer {res.bearer}", "Content-Type": "application/json"}
        method, url, kwargs = self._request(action.method, table_url, cfg)
        with self.http_client(headers=headers) as client:
            resp = self.send(client, method, url, **kwargs)
        return RuntimeResult(success=True, rows=[response_row(resp)])

    @staticmethod
    def _request(method: str, table_url: str, cfg: Any):
        if method == "list":
            return "POST", f"{table_url}/listRecords", {"json": list_body(cfg)}
        if method == "get":
            return "GET", f"{table_url}/{quote(cfg.record_id, safe='')}", {}
        if method == "create":
            body = cfg.records[0] if len(cfg.records) == 1 else {"records": cfg.records}
            return "POST", table_url, {"json": body}
        if method == "update":
            return "PATCH", f"{table_url}/{quote(cfg.record_id, safe='')}", {"json": cfg.record}
        if method == "bulkUpdate":
            return "PATCH", table_url, {"json": {"records": cfg.records}}
        if method == "delete":
            return "DELETE", f"{table_url}/{quote(cfg.record_id, safe='')}", {}
        if method == "bulkDelete":
            return "DELETE", table_url, {"params": [("records[]", rid) for rid in cfg.record_ids]}
        raise InvalidActionError(f"airtable: unsupported method {method!r}")


__all__ = ["AirtableConnector", "list_body", "response_row"]
