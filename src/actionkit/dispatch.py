"""Dispatch facade: the single entry point for executing an action.

A dispatch builds the connector for a resource type, validates the resource
and action options, optionally probes connectivity and finally runs the
action. Validation always completes before any connection is opened, and
every failure is returned as a ``DispatchOutcome`` carrying the error.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Union

import httpx

from .config.loader import get_config
from .config.models import RuntimeConfig
from .connectors import build_connector, is_virtual_type
from .connectors.base import Connector
from .core.errors import (
    ActionError,
    ConnectFailedError,
    InvalidActionError,
    OperationFailedError,
    UnsupportedError,
    UnsupportedTypeError,
)
from .core.results import ConnectionResult, MetaInfoResult, RuntimeResult, ValidateResult
from .observability.logging import get_logger
from .template import render_template

Result = Union[RuntimeResult, ValidateResult, ConnectionResult, MetaInfoResult]
ConnectorFactory = Callable[[str, Optional[RuntimeConfig]], Optional[Connector]]

AIAGENT_RUN_PATH = "/api/v1/aiAgent/{id}/run"


def _unexpected(resource_type: str, exc: Exception) -> OperationFailedError:
    err = OperationFailedError(f"{resource_type}: {type(exc).__name__}: {exc}")
    err.__cause__ = exc
    return err


@dataclass
class DispatchOutcome:
    """Result of a facade call, paired with the error when it failed."""

    result: Result
    error: Optional[ActionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> Result:
        if self.error is not None:
            raise self.error
        return self.result


@dataclass
class AuditEvent:
    resource_type: str
    action_id: Optional[str]
    resource_id: Optional[str]
    action_template: Dict[str, Any]
    success: bool
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class LogAuditSink:
    """Audit sink that writes events through the structured logger."""

    def __init__(self) -> None:
        self.log = get_logger()

    def record(self, event: AuditEvent) -> None:
        self.log.info(
            "Action run audited",
            resource_type=event.resource_type,
            action_id=event.action_id,
            resource_id=event.resource_id,
            action_template=event.action_template,
            success=event.success,
            error=event.error,
        )


def _agent_id(action: Mapping[str, Any]) -> str:
    for key in ("aiAgentID", "resourceID"):
        value = action.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, int) or (isinstance(value, str) and value):
            return str(value)
    raise InvalidActionError("aiagent: aiAgentID is required")


def render_variables(variables: Any, context: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Render string variable values against ``context``; non-string values pass through."""
    out: List[Dict[str, Any]] = []
    for item in variables or []:
        if not isinstance(item, Mapping):
            continue
        if "value" not in item:
            raise InvalidActionError("aiagent: variable is missing its value")
        value = item["value"]
        if isinstance(value, str):
            value = render_template(value, context)
        out.append({"key": item.get("key", ""), "value": value, "defaultValue": item.get("defaultValue") or ""})
    return out


class AIAgentClient:
    """HTTP client for the external service that runs ``aiagent`` actions."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport
        self.log = get_logger()

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> Optional["AIAgentClient"]:
        if not config.aiagent.base_url:
            return None
        return cls(config.aiagent.base_url, config.aiagent.token, timeout=config.http.timeout_s)

    @staticmethod
    def validate(action: Optional[Mapping[str, Any]]) -> ValidateResult:
        action = action or {}
        _agent_id(action)
        if not isinstance(action.get("input", ""), str):
            raise InvalidActionError("aiagent: input must be a string")
        return ValidateResult(valid=True)

    def build_request(self, action: Mapping[str, Any]) -> Dict[str, Any]:
        context = action.get("context") if isinstance(action.get("context"), Mapping) else {}
        body = {k: v for k, v in action.items() if k not in ("context", "authorization")}
        body["input"] = render_template(str(action.get("input") or ""), context)
        body["variables"] = render_variables(action.get("variables"), context)
        return body

    def run(self, action: Optional[Mapping[str, Any]]) -> RuntimeResult:
        action = action or {}
        self.validate(action)
        agent_id = _agent_id(action)
        url = self.base_url + AIAGENT_RUN_PATH.format(id=agent_id)
        headers = {"Request-Token": self.token or "", "Authorization": str(action.get("authorization") or "")}
        opts: Dict[str, Any] = {"headers": headers}
        if self.timeout is not None:
            opts["timeout"] = self.timeout
        if self.transport is not None:
            opts["transport"] = self.transport

        with httpx.Client(**opts) as client:
            self.log.handle_opened("http", type="aiagent")
            try:
                resp = client.post(url, json=self.build_request(action))
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                raise ConnectFailedError(f"aiagent: {exc}") from exc
            except httpx.HTTPError as exc:
                raise OperationFailedError(f"aiagent: {exc}") from exc
            finally:
                self.log.handle_released("http", type="aiagent")

        if resp.status_code not in (200, 201):
            raise OperationFailedError(f"aiagent: {resp.text}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise OperationFailedError("aiagent: response is not JSON") from exc
        payload = body.get("payload", "") if isinstance(body, dict) else ""
        return RuntimeResult(success=True, rows=[{"content": payload}])


class Dispatcher:
    """Runs actions against resources through registered connectors."""

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        audit_sink: Optional[AuditSink] = None,
        aiagent_client: Optional[AIAgentClient] = None,
        connector_factory: ConnectorFactory = build_connector,
    ) -> None:
        self.config = config or get_config()
        if audit_sink is None and self.config.audit.enabled:
            audit_sink = LogAuditSink()
        self.audit_sink = audit_sink
        self.aiagent_client = aiagent_client or AIAgentClient.from_config(self.config)
        self.connector_factory = connector_factory
        self.log = get_logger()

    def _connector(self, resource_type: str) -> Connector:
        connector = self.connector_factory(resource_type, self.config)
        if connector is None:
            raise UnsupportedTypeError(f"unsupported resource type: {resource_type!r}")
        return connector

    def _run(
        self,
        resource_type: str,
        resource_opts: Optional[Mapping[str, Any]],
        action_opts: Optional[Mapping[str, Any]],
        test_connection: bool,
    ) -> RuntimeResult:
        if resource_type == "transformer":
            return RuntimeResult(success=True)
        if resource_type == "aiagent":
            if self.aiagent_client is None:
                raise UnsupportedError("aiagent: no agent service is configured")
            return self.aiagent_client.run(action_opts)

        connector = self._connector(resource_type)
        connector.validate_resource_options(resource_opts)
        connector.validate_action_options(action_opts)
        if test_connection:
            connector.test_connection(resource_opts)
        return connector.run(resource_opts, action_opts)

    def run_action(
        self,
        resource_type: str,
        resource_opts: Optional[Mapping[str, Any]],
        action_opts: Optional[Mapping[str, Any]],
        *,
        test_connection: bool = False,
        action_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> DispatchOutcome:
        resource_type = (resource_type or "").lower()
        template = copy.deepcopy(dict(action_opts or {}))
        try:
            with self.log.operation("dispatch", resource_type=resource_type, action_id=action_id):
                outcome = DispatchOutcome(self._run(resource_type, resource_opts, action_opts, test_connection))
        except ActionError as exc:
            outcome = DispatchOutcome(RuntimeResult(success=False), exc)
        except Exception as exc:
            outcome = DispatchOutcome(RuntimeResult(success=False), _unexpected(resource_type, exc))

        if self.audit_sink is not None:
            self.audit_sink.record(
                AuditEvent(
                    resource_type=resource_type,
                    action_id=action_id,
                    resource_id=resource_id,
                    action_template=template,
                    success=outcome.ok,
                    error=outcome.error.message if outcome.error else None,
                )
            )
        return outcome

    def validate_resource(self, resource_type: str, options: Optional[Mapping[str, Any]]) -> DispatchOutcome:
        resource_type = (resource_type or "").lower()
        try:
            if is_virtual_type(resource_type):
                return DispatchOutcome(ValidateResult(valid=True))
            return DispatchOutcome(self._connector(resource_type).validate_resource_options(options))
        except ActionError as exc:
            return DispatchOutcome(ValidateResult(valid=False), exc)

    def validate_action(self, resource_type: str, options: Optional[Mapping[str, Any]]) -> DispatchOutcome:
        resource_type = (resource_type or "").lower()
        try:
            if resource_type == "aiagent":
                return DispatchOutcome(AIAgentClient.validate(options))
            if resource_type == "transformer":
                return DispatchOutcome(ValidateResult(valid=True))
            return DispatchOutcome(self._connector(resource_type).validate_action_options(options))
        except ActionError as exc:
            return DispatchOutcome(ValidateResult(valid=False), exc)

    def test_connection(self, resource_type: str, options: Optional[Mapping[str, Any]]) -> DispatchOutcome:
        resource_type = (resource_type or "").lower()
        try:
            with self.log.operation("test_connection", resource_type=resource_type):
                if is_virtual_type(resource_type):
                    raise UnsupportedError(f"unsupported type: {resource_type}")
                connector = self._connector(resource_type)
                connector.validate_resource_options(options)
                return DispatchOutcome(connector.test_connection(options))
        except ActionError as exc:
            return DispatchOutcome(ConnectionResult(success=False), exc)
        except Exception as exc:
            return DispatchOutcome(ConnectionResult(success=False), _unexpected(resource_type, exc))

    def get_meta_info(self, resource_type: str, options: Optional[Mapping[str, Any]]) -> DispatchOutcome:
        resource_type = (resource_type or "").lower()
        try:
            with self.log.operation("get_meta_info", resource_type=resource_type):
                if is_virtual_type(resource_type):
                    raise UnsupportedError(f"unsupported type: {resource_type}")
                connector = self._connector(resource_type)
                connector.validate_resource_options(options)
                return DispatchOutcome(connector.get_meta_info(options))
        except ActionError as exc:
            return DispatchOutcome(MetaInfoResult(success=False), exc)
        except Exception as exc:
            return DispatchOutcome(MetaInfoResult(success=False), _unexpected(resource_type, exc))


_default: Optional[Dispatcher] = None


def get_dispatcher() -> Dispatcher:
    global _default
    if _default is None:
        _default = Dispatcher()
    return _default


def dispatch(
    resource_type: str,
    resource_opts: Optional[Mapping[str, Any]],
    action_opts: Optional[Mapping[str, Any]],
    **kwargs: Any,
) -> DispatchOutcome:
    """Run one action through the default dispatcher."""
    return get_dispatcher().run_action(resource_type, resource_opts, action_opts, **kwargs)


__all__ = [
    "AIAgentClient",
    "AuditEvent",
    "AuditSink",
    "DispatchOutcome",
    "Dispatcher",
    "LogAuditSink",
    "dispatch",
    "get_dispatcher",
    "render_variables",
]
