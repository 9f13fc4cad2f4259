"""Google Sheets connector over the Sheets v4 and Drive v3 REST APIs.

Service-account credentials are exchanged for an access token with
``google-auth``; OAuth2 resources carry an access token obtained elsewhere.
Sheet data is addressed by header row: the first row of a sheet names the
columns and every later row is returned as ``{header: cell}``.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import quote

import httpx
from pydantic import Field, ValidationError, model_validator

from ..core.errors import ConnectFailedError, InvalidActionError, InvalidResourceError, OperationFailedError
from ..core.options import NonEmptyStr, OptionsModel, decode_action, decode_resource
from ..core.results import ConnectionResult, MetaInfoResult, Row, RuntimeResult
from .base import require_module
from .firebase import service_account
from .http import HttpConnector
from .registry import register_connector

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
DRIVE_FILES_API = "https://www.googleapis.com/drive/v3/files"
SPREADSHEET_MIME_QUERY = "mimeType='application/vnd.google-apps.spreadsheet'"
SCOPES = (
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
)
DEFAULT_SHEET = "Sheet1"
LAST_COLUMN = "Z"


class ServiceAccountOpts(OptionsModel):
    private_key: Any

    @model_validator(mode="after")
    def _key_is_account(self):
        service_account(self.private_key)
        return self


class OAuth2Opts(OptionsModel):
    access_type: Literal["rw", "r"]
    access_token: str = ""
    token_type: str = ""
    refresh_token: str = ""
    status: int = 0


AUTH_MODELS = {"serviceAccount": ServiceAccountOpts, "oauth2": OAuth2Opts}


class GoogleSheetsResource(OptionsModel):
    authentication: Literal["serviceAccount", "oauth2"]
    opts: Dict[str, Any]

    @model_validator(mode="after")
    def _opts_for_authentication(self):
        try:
            AUTH_MODELS[self.authentication].model_validate(self.opts)
        except ValidationError as exc:
            raise ValueError(f"opts: {exc.errors()[0]['msg']}") from exc
        return self


class GoogleSheetsAction(OptionsModel):
    method: Literal["read", "append", "update", "bulkUpdate", "delete", "create", "copy", "list", "get"]
    opts: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _opts_required(self):
        if self.method != "list" and not self.opts:
            raise ValueError(f"opts is required for {self.method}")
        return self


class ReadOpts(OptionsModel):
    spreadsheet: NonEmptyStr
    sheet_name: str = ""
    limit: int = Field(default=0, ge=0)
    offset: int = Field(default=0, ge=0)
    range_type: Literal["a1", "limit"]
    a1_notation: str = ""

    @model_validator(mode="after")
    def _a1_needs_notation(self):
        if self.range_type == "a1" and not self.a1_notation:
            raise ValueError("a1Notation is required when rangeType is a1")
        return self


class AppendOpts(OptionsModel):
    spreadsheet: NonEmptyStr
    sheet_name: str = ""
    values: List[Dict[str, Any]] = Field(default_factory=list)


class SheetFilter(OptionsModel):
    key: str = ""
    operator: str = ""
    value: Any = ""


class UpdateOpts(OptionsModel):
    spreadsheet: NonEmptyStr
    filter_type: Literal["a1", "filter"]
    a1_notation: str = ""
    values: List[Dict[str, Any]] = Field(default_factory=list)
    sheet_name: str = ""
    filters: List[SheetFilter] = Field(default_factory=list)

    @model_validator(mode="after")
    def _a1_needs_notation(self):
        if self.filter_type == "a1" and not self.a1_notation:
            raise ValueError("a1Notation is required when filterType is a1")
        return self


class BulkUpdateOpts(OptionsModel):
    spreadsheet: NonEmptyStr
    sheet_name: str = ""
    primary_key: NonEmptyStr
    rows_array: List[Dict[str, Any]] = Field(default_factory=list)


class DeleteOpts(OptionsModel):
    spreadsheet: NonEmptyStr
    sheet_name: str = ""
    row_index: int = Field(default=0, ge=0)


class CreateOpts(OptionsModel):
    title: NonEmptyStr


class CopyOpts(OptionsModel):
    spreadsheet: NonEmptyStr
    sheet_name: str = ""
    to_spreadsheet: NonEmptyStr
    to_sheet: str = ""


class GetOpts(OptionsModel):
    spreadsheet: NonEmptyStr


OPTS_MODELS = {
    "read": ReadOpts,
    "append": AppendOpts,
    "update": UpdateOpts,
    "bulkUpdate": BulkUpdateOpts,
    "delete": DeleteOpts,
    "create": CreateOpts,
    "copy": CopyOpts,
    "get": GetOpts,
}


def cell_text(value: Any) -> str:
    """Render a cell or option value the way it reads in the sheet."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def rows_from_values(values: List[List[Any]]) -> List[Row]:
    """First row is the header; cells beyond the header width are dropped."""
    if not values:
        return []
    headers = [cell_text(h) for h in values[0]]
    rows: List[Row] = []
    for raw in values[1:]:
        rows.append({headers[j]: cell for j, cell in enumerate(raw) if j < len(headers)})
    return rows


def append_values(existing: List[List[Any]], records: List[Dict[str, Any]]) -> List[List[Any]]:
    """Order ``records`` by the sheet's header row, writing a sorted header first when the sheet is empty."""
    if existing:
        keys = [cell_text(k) for k in existing[0]]
        return [[record.get(k) for k in keys] for record in records]
    if not records:
        return []
    keys = sorted(records[0])
    return [list(keys)] + [[record.get(k) for k in keys] for record in records]


def matching_rows(values: List[List[Any]], filters: List[SheetFilter]) -> List[int]:
    """Indexes of data rows whose cells equal every filter value."""
    if not values:
        return []
    header = [cell_text(h) for h in values[0]]
    matches: List[int] = []
    for index, row in enumerate(values[1:], start=1):
        ok = True
        for f in filters:
            col = header.index(f.key) if f.key in header else -1
            if col == -1 or col >= len(row) or cell_text(row[col]) != cell_text(f.value):
                ok = False
                break
        if ok:
            matches.append(index)
    return matches


def limit_range(sheet: str, total_rows: int, offset: int, limit: int) -> str:
    start = offset + 1
    end = total_rows if limit == 0 else start + limit
    end = min(end, total_rows)
    if end == 0:
        return f"{sheet}!A{start}:{LAST_COLUMN}"
    return f"{sheet}!A{start}:{LAST_COLUMN}{end}"


def _sheet_property(spreadsheet: Dict[str, Any], title: str) -> Optional[Dict[str, Any]]:
    for sheet in spreadsheet.get("sheets") or []:
        props = sheet.get("properties") or {}
        if props.get("title") == title:
            return props
    return None


def _batch_row(body: Dict[str, Any]) -> Row:
    return {
        "spreadsheetId": body.get("spreadsheetId"),
        "updatedSpreadsheet": body.get("updatedSpreadsheet"),
        "replies": body.get("replies", []),
    }


def _spreadsheet_row(body: Dict[str, Any]) -> Row:
    return {
        "spreadsheetId": body.get("spreadsheetId"),
        "spreadsheetUrl": body.get("spreadsheetUrl"),
        "sheets": body.get("sheets", []),
        "properties": body.get("properties"),
    }


def _values_url(spreadsheet: str, a1: str) -> str:
    return f"{SHEETS_API}/{quote(spreadsheet, safe='')}/values/{quote(a1, safe='!:')}"


@register_connector("googlesheets")
class GoogleSheetsConnector(HttpConnector):
    resource_model = GoogleSheetsResource
    action_model = GoogleSheetsAction

    def access_token(self, res: GoogleSheetsResource) -> str:
        if res.authentication == "oauth2":
            opts = decode_resource(OAuth2Opts, res.opts)
            if not opts.access_token:
                raise InvalidResourceError("googlesheets: oauth2 access token is missing")
            return opts.access_token

        sa = require_module("google.oauth2.service_account", "google")
        transport = require_module("google.auth.transport.requests", "google")
        auth_exc = require_module("google.auth.exceptions", "google")
        info = service_account(decode_resource(ServiceAccountOpts, res.opts).private_key)
        try:
            creds = sa.Credentials.from_service_account_info(info, scopes=list(SCOPES))
        except ValueError as exc:
            raise InvalidResourceError(f"googlesheets: {exc}") from exc
        try:
            creds.refresh(transport.Request())
        except auth_exc.GoogleAuthError as exc:
            raise ConnectFailedError(f"googlesheets: token refresh failed: {exc}") from exc
        return creds.token

    def _client(self, res: GoogleSheetsResource):
        return self.http_client(headers={"Authorization": f"Bearer {self.access_token(res)}"})

    def test_connection(self, options) -> ConnectionResult:
        self.decode_resource(options)
        return ConnectionResult(success=True)

    def _spreadsheet_files(self, client: httpx.Client) -> List[Row]:
        body = self.send_json(client, "GET", DRIVE_FILES_API, params={"q": SPREADSHEET_MIME_QUERY}) or {}
        return [{"id": f.get("id"), "name": f.get("name")} for f in body.get("files") or []]

    def get_meta_info(self, options) -> MetaInfoResult:
        res = self.decode_resource(options)
        with self._client(res) as client:
            files = self._spreadsheet_files(client)
        return MetaInfoResult(success=True, schema={"spreadsheets": files})

    def validate_action_options(self, options):
        action: GoogleSheetsAction = self.decode_action(options)
        if action.method in OPTS_MODELS:
            decode_action(OPTS_MODELS[action.method], action.opts)
        return super().validate_action_options(options)

    def run(self, resource_options, action_options) -> RuntimeResult:
        res: GoogleSheetsResource = self.decode_resource(resource_options)
        action: GoogleSheetsAction = self.decode_action(action_options)
        with self._client(res) as client:
            if action.method == "list":
                return RuntimeResult(success=True, rows=self._spreadsheet_files(client))
            opts = decode_action(OPTS_MODELS[action.method], action.opts)
            rows = getattr(self, "_m_" + action.method.lower())(client, opts)
        return RuntimeResult(success=True, rows=rows)

    def _spreadsheet(self, client: httpx.Client, spreadsheet: str, **params: Any) -> Dict[str, Any]:
        return self.send_json(client, "GET", f"{SHEETS_API}/{quote(spreadsheet, safe='')}", params=params) or {}

    def _values(self, client: httpx.Client, spreadsheet: str, a1: str) -> List[List[Any]]:
        body = self.send_json(client, "GET", _values_url(spreadsheet, a1)) or {}
        return body.get("values") or []

    def _sheet_id(self, client: httpx.Client, spreadsheet: str, title: str) -> int:
        props = _sheet_property(self._spreadsheet(client, spreadsheet), title)
        if props is None:
            raise OperationFailedError(f"googlesheets: sheet {title!r} not found")
        return int(props.get("sheetId", 0))

    def _batch_update(self, client: httpx.Client, spreadsheet: str, requests: List[Dict[str, Any]]) -> List[Row]:
        body = self.send_json(
            client, "POST", f"{SHEETS_API}/{quote(spreadsheet, safe='')}:batchUpdate", json={"requests": requests}
        ) or {}
        return [_batch_row(body)]

    def _m_read(self, client: httpx.Client, opts: ReadOpts) -> List[Row]:
        a1 = opts.a1_notation
        if opts.range_type == "limit":
            sheet = opts.sheet_name or DEFAULT_SHEET
            props = _sheet_property(self._spreadsheet(client, opts.spreadsheet), sheet) or {}
            total = int((props.get("gridProperties") or {}).get("rowCount", 0))
            a1 = limit_range(sheet, total, opts.offset, opts.limit)
        return rows_from_values(self._values(client, opts.spreadsheet, a1))

    def _m_append(self, client: httpx.Client, opts: AppendOpts) -> List[Row]:
        sheet = opts.sheet_name or DEFAULT_SHEET
        existing = self._values(client, opts.spreadsheet, sheet)
        body = self.send_json(
            client,
            "POST",
            _values_url(opts.spreadsheet, f"{sheet}!A{len(existing) + 1}") + ":append",
            params={"valueInputOption": "RAW"},
            json={"majorDimension": "ROWS", "values": append_values(existing, opts.values)},
        ) or {}
        updates = body.get("updates") or {}
        return [
            {
                "spreadsheetId": body.get("spreadsheetId"),
                "tableRange": body.get("tableRange", ""),
                "updates": {
                    "spreadsheetId": body.get("spreadsheetId"),
                    "updatedRange": updates.get("updatedRange"),
                    "updatedRows": updates.get("updatedRows", 0),
                    "updatedColumns": updates.get("updatedColumns", 0),
                    "updatedCells": updates.get("updatedCells", 0),
                },
            }
        ]

    def _m_update(self, client: httpx.Client, opts: UpdateOpts) -> List[Row]:
        sheet = opts.sheet_name or DEFAULT_SHEET
        if opts.filter_type == "filter":
            return self._update_by_filters(client, opts, sheet)
        header = self._values(client, opts.spreadsheet, f"{sheet}!A1:{LAST_COLUMN}1")
        keys = [cell_text(k) for k in header[0]] if header else []
        body = self.send_json(
            client,
            "PUT",
            _values_url(opts.spreadsheet, opts.a1_notation),
            params={"valueInputOption": "RAW"},
            json={"majorDimension": "ROWS", "values": [[record.get(k) for k in keys] for record in opts.values]},
        ) or {}
        return [
            {
                "spreadsheetId": body.get("spreadsheetId"),
                "updates": {
                    "spreadsheetId": body.get("spreadsheetId"),
                    "updatedRange": body.get("updatedRange"),
                    "updatedRows": body.get("updatedRows", 0),
                    "updatedColumns": body.get("updatedColumns", 0),
                    "updatedCells": body.get("updatedCells", 0),
                },
            }
        ]

    def _update_by_filters(self, client: httpx.Client, opts: UpdateOpts, sheet: str) -> List[Row]:
        if not opts.values:
            raise InvalidActionError("googlesheets: values are required to update by filter")
        values = self._values(client, opts.spreadsheet, f"{sheet}!A1:{LAST_COLUMN}")
        header = [cell_text(h) for h in values[0]] if values else []
        data = []
        for i, index in enumerate(matching_rows(values, opts.filters)):
            row = list(values[index]) + [""] * (len(header) - len(values[index]))
            for key, value in opts.values[min(i, len(opts.values) - 1)].items():
                if key in header:
                    row[header.index(key)] = value
            data.append({"range": f"{sheet}!A{index + 1}:{LAST_COLUMN}{index + 1}", "values": [row]})
        body = self.send_json(
            client,
            "POST",
            f"{SHEETS_API}/{quote(opts.spreadsheet, safe='')}/values:batchUpdate",
            json={"valueInputOption": "RAW", "data": data},
        ) or {}
        return [
            {
                "spreadsheetId": body.get("spreadsheetId"),
                "updates": {
                    "spreadsheetId": body.get("spreadsheetId"),
                    "updatedSheets": body.get("totalUpdatedSheets", 0),
                    "updatedRows": body.get("totalUpdatedRows", 0),
                    "updatedColumns": body.get("totalUpdatedColumns", 0),
                    "updatedCells": body.get("totalUpdatedCells", 0),
                },
            }
        ]

    def _m_bulkupdate(self, client: httpx.Client, opts: BulkUpdateOpts) -> List[Row]:
        sheet = opts.sheet_name or DEFAULT_SHEET
        values = self._values(client, opts.spreadsheet, f"{sheet}!A1:{LAST_COLUMN}")
        if not values:
            raise OperationFailedError("googlesheets: no data found")
        header = [cell_text(h) for h in values[0]]
        if opts.primary_key not in header:
            raise OperationFailedError("googlesheets: primary key column not found")
        pk_col = header.index(opts.primary_key)
        row_numbers = {
            cell_text(row[pk_col]): number for number, row in enumerate(values[1:], start=2) if pk_col < len(row)
        }
        sheet_id = self._sheet_id(client, opts.spreadsheet, sheet)

        requests: List[Dict[str, Any]] = []
        for record in opts.rows_array:
            if opts.primary_key not in record:
                raise InvalidActionError("googlesheets: primary key value missing in provided values")
            number = row_numbers.get(cell_text(record[opts.primary_key]))
            if number is None:
                raise OperationFailedError("googlesheets: primary key value not found in the sheet")
            for column, value in record.items():
                if column == opts.primary_key or column not in header:
                    continue
                col = header.index(column)
                requests.append(
                    {
                        "updateCells": {
                            "range": {
                                "sheetId": sheet_id,
                                "startColumnIndex": col,
                                "endColumnIndex": col + 1,
                                "startRowIndex": number - 1,
                                "endRowIndex": number,
                            },
                            "rows": [{"values": [{"userEnteredValue": {"stringValue": cell_text(value)}}]}],
                            "fields": "*",
                        }
                    }
                )
        return self._batch_update(client, opts.spreadsheet, requests)

    def _m_delete(self, client: httpx.Client, opts: DeleteOpts) -> List[Row]:
        sheet_id = self._sheet_id(client, opts.spreadsheet, opts.sheet_name or DEFAULT_SHEET)
        request = {
            "deleteDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    "startIndex": opts.row_index,
                    "endIndex": opts.row_index + 1,
                }
            }
        }
        return self._batch_update(client, opts.spreadsheet, [request])

    def _m_create(self, client: httpx.Client, opts: CreateOpts) -> List[Row]:
        body = self.send_json(client, "POST", SHEETS_API, json={"properties": {"title": opts.title}}) or {}
        return [_spreadsheet_row(body)]

    def _m_copy(self, client: httpx.Client, opts: CopyOpts) -> List[Row]:
        sheet_id = self._sheet_id(client, opts.spreadsheet, opts.sheet_name or DEFAULT_SHEET)
        copied = self.send_json(
            client,
            "POST",
            f"{SHEETS_API}/{quote(opts.spreadsheet, safe='')}/sheets/{sheet_id}:copyTo",
            json={"destinationSpreadsheetId": opts.to_spreadsheet},
        ) or {}
        rename = {
            "updateSheetProperties": {
                "properties": {"sheetId": copied.get("sheetId"), "title": opts.to_sheet or DEFAULT_SHEET},
                "fields": "title",
            }
        }
        return self._batch_update(client, opts.to_spreadsheet, [rename])

    def _m_get(self, client: httpx.Client, opts: GetOpts) -> List[Row]:
        return [_spreadsheet_row(self._spreadsheet(client, opts.spreadsheet, includeGridData="false"))]


__all__ = [
    "GoogleSheetsConnector",
    "rows_from_values",
    "append_values",
    "matching_rows",
    "limit_range",
    "cell_text",
]
