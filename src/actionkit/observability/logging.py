"""Structured logging for action dispatch."""

import json
import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

logger = logging.getLogger("actionkit")
logger.setLevel(logging.INFO)

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


class ActionLogger:
    """Structured JSON logger with secret redaction."""

    def __init__(self, name: str = "actionkit", verbose: bool = False):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if verbose else logging.INFO)

        self.secret_patterns = [
            r'(?i)(api[_-]?key|secret|password|token|private[_-]?key)\s*[=:]\s*"([^"]+)"',
            r'(?i)(api[_-]?key|secret|password|token|private[_-]?key)\s*[=:]\s*([^\s]+)',
            r'(?i)authorization\s*[=:]\s*(basic|bearer)\s+\S+',
        ]

        # Matched case-insensitively as substrings of dict keys
        self.secret_keys = [
            'password', 'secret', 'token', 'apikey', 'api_key',
            'privatekey', 'private_key', 'clientkey', 'authorization',
            'accesskeyid', 'secretaccesskey',
        ]

    def _redact_secrets(self, message: str) -> str:
        """Replace a message that carries credentials with a placeholder."""
        for pattern in self.secret_patterns:
            if re.search(pattern, message):
                return "[REDACTED: Contains secrets]"
        return message

    def _is_secret_key(self, key: str) -> bool:
        k = str(key).lower()
        return any(s in k for s in self.secret_keys)

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._redact_secrets(value)
        if isinstance(value, dict):
            return self._redact_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._redact_value(v) for v in value]
        return value

    def _redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively redact secrets from a dictionary."""
        redacted: Dict[str, Any] = {}
        for key, value in data.items():
            if self._is_secret_key(key) and value not in (None, ""):
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = self._redact_value(value)
        return redacted

    def _log_structured(self, level: int, message: str, **kwargs: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        log_entry: Dict[str, Any] = {
            "message": self._redact_secrets(message),
            "timestamp": time.time(),
            "level": logging.getLevelName(level),
        }
        if kwargs:
            log_entry["context"] = self._redact_dict(kwargs)
        self.logger.log(level, json.dumps(log_entry, default=str))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log_structured(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log_structured(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log_structured(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log_structured(logging.ERROR, message, **kwargs)

    @contextmanager
    def operation(self, operation_name: str, **context: Any):
        """Log start, completion and failure of an operation with its duration."""
        start_time = time.time()
        self.debug(f"Starting {operation_name}", operation=operation_name, **context)
        try:
            yield self
        except Exception as e:
            duration = time.time() - start_time
            self.error(
                f"Operation {operation_name} failed",
                operation=operation_name,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=duration * 1000,
                **context
            )
            raise
        else:
            duration = time.time() - start_time
            self.info(
                f"Completed {operation_name}",
                operation=operation_name,
                duration_ms=duration * 1000,
                **context
            )

    def handle_opened(self, kind: str, **details: Any) -> None:
        self.debug(f"Opened {kind} handle", handle=kind, **details)

    def handle_released(self, kind: str, **details: Any) -> None:
        self.debug(f"Released {kind} handle", handle=kind, **details)


_action_logger: Optional[ActionLogger] = None


def get_logger(name: str = "actionkit", verbose: bool = False) -> ActionLogger:
    """Get or create the process-wide action logger."""
    global _action_logger
    if _action_logger is None:
        _action_logger = ActionLogger(name, verbose)
    return _action_logger


def set_verbose(verbose: bool) -> None:
    get_logger().logger.setLevel(logging.DEBUG if verbose else logging.INFO)
