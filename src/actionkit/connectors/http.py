"""httpx plumbing shared by HTTP-shaped connectors."""

from __future__ import annotations

import contextlib
import json
from typing import Any, Dict, Iterator, List, Optional

import httpx

from ..config.models import RuntimeConfig
from ..core.errors import ConnectFailedError, InvalidResourceError, OperationFailedError
from ..core.results import Row
from .base import Connector


def canonical_header(name: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def header_lists(headers: httpx.Headers) -> Dict[str, List[str]]:
    """Response headers as ``{Canonical-Name: [values...]}``."""
    out: Dict[str, List[str]] = {}
    for raw_key, raw_value in headers.raw:
        key = canonical_header(raw_key.decode("latin-1"))
        out.setdefault(key, []).append(raw_value.decode("latin-1"))
    return out


def body_rows(content: bytes) -> List[Row]:
    """JSON object -> one row; JSON array of objects -> rows; anything else -> no rows."""
    try:
        parsed = json.loads(content)
    except (ValueError, UnicodeDecodeError):
        return []
    if isinstance(parsed, dict):
        return [parsed]
    if isinstance(parsed, list) and all(isinstance(item, dict) for item in parsed):
        return list(parsed)
    return []


def response_extra(resp: httpx.Response) -> Dict[str, Any]:
    return {
        "raw": resp.content,
        "headers": header_lists(resp.headers),
        "statusCode": resp.status_code,
        "statusText": resp.reason_phrase,
    }


class HttpConnector(Connector):
    """Connector whose driver is an httpx client opened per call."""

    def __init__(self, config: Optional[RuntimeConfig] = None, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        super().__init__(config)
        self.transport = transport

    @contextlib.contextmanager
    def http_client(self, **kwargs: Any) -> Iterator[httpx.Client]:
        opts: Dict[str, Any] = {}
        if self.config.http.timeout_s is not None:
            opts["timeout"] = self.config.http.timeout_s
        if self.transport is not None:
            opts["transport"] = self.transport
        opts.update(kwargs)
        try:
            client = httpx.Client(**opts)
        except httpx.InvalidURL as exc:
            raise InvalidResourceError(f"{self.type_name}: invalid URL: {exc}") from exc
        self.log.handle_opened("http", type=self.type_name)
        try:
            yield client
        finally:
            client.close()
            self.log.handle_released("http", type=self.type_name)

    def send(self, client: httpx.Client, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return client.request(method, url, **kwargs)
        except httpx.InvalidURL as exc:
            raise InvalidResourceError(f"{self.type_name}: invalid URL {url!r}: {exc}") from exc
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ConnectFailedError(f"{self.type_name}: {method} {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise OperationFailedError(f"{self.type_name}: {method} {url}: {exc}") from exc

    def send_json(self, client: httpx.Client, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode its JSON body, failing on HTTP error statuses."""
        resp = self.send(client, method, url, **kwargs)
        if resp.is_error:
            raise OperationFailedError(f"{self.type_name}: {method} {url} returned {resp.status_code}: {resp.text}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise OperationFailedError(f"{self.type_name}: invalid JSON response from {url}") from exc


__all__ = ["HttpConnector", "body_rows", "header_lists", "response_extra", "canonical_header"]
