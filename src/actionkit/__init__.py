"""actionkit: resource/action dispatch core.

Public surface:
- build_connector / available_connectors: connector registry
- dispatch / Dispatcher: validate-then-run facade
- is_select_sql: SQL read/write classifier
- rows_to_mappings: SQL cursor materialiser
"""

from .config import RuntimeConfig, get_config, load_config, set_config
from .connectors import Connector, available_connectors, build_connector, is_virtual_type
from .connectors.sql.materialize import rows_to_mappings
from .core.errors import (
    ActionError,
    ConnectFailedError,
    InvalidActionError,
    InvalidResourceError,
    OperationFailedError,
    OversizeObjectError,
    ParseError,
    SQLSyntaxError,
    UnsupportedError,
    UnsupportedTypeError,
)
from .core.results import ConnectionResult, MetaInfoResult, RuntimeResult, ValidateResult
from .dispatch import AIAgentClient, AuditEvent, AuditSink, DispatchOutcome, Dispatcher, dispatch
from .sqlparse import is_select_sql

__version__ = "0.1.0"

__all__ = [
    "RuntimeConfig",
    "load_config",
    "get_config",
    "set_config",
    "Connector",
    "build_connector",
    "available_connectors",
    "is_virtual_type",
    "rows_to_mappings",
    "ActionError",
    "UnsupportedTypeError",
    "InvalidResourceError",
    "InvalidActionError",
    "ConnectFailedError",
    "OperationFailedError",
    "SQLSyntaxError",
    "ParseError",
    "UnsupportedError",
    "OversizeObjectError",
    "ValidateResult",
    "ConnectionResult",
    "MetaInfoResult",
    "RuntimeResult",
    "Dispatcher",
    "DispatchOutcome",
    "AuditEvent",
    "AuditSink",
    "AIAgentClient",
    "dispatch",
    "is_select_sql",
]
