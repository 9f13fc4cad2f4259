from __future__ import annotations

import re
from typing import Any, Optional


class ActionError(Exception):
    """Base exception for action dispatch."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ConfigError(ActionError):
    pass


class UnsupportedTypeError(ActionError):
    pass


class InvalidResourceError(ActionError):
    pass


class InvalidActionError(ActionError):
    pass


class ConnectFailedError(ActionError):
    pass


class OperationFailedError(ActionError):
    pass


class ParseError(ActionError):
    """Raised when SQL text cannot be tokenised."""


class UnsupportedError(ActionError):
    """Raised when an operation is not meaningful for a connector."""


class OversizeObjectError(ActionError):
    pass


_LINE_RE = re.compile(r"line (\d+)")


class SQLSyntaxError(OperationFailedError):
    """MySQL error 1064 reshaped into a line number and a short description."""

    def __init__(self, message: str, *, line_number: Optional[int], description: str) -> None:
        super().__init__(message)
        self.line_number = line_number
        self.description = description

    @classmethod
    def from_driver_message(cls, text: str) -> "SQLSyntaxError":
        _, sep, tail = text.partition("to use")
        description = "SQL syntax error" + (tail if sep else "")
        match = _LINE_RE.search(text)
        if match:
            line: Optional[int] = int(match.group(1))
        elif text and text[-1].isdigit():
            line = int(text[-1])
        else:
            line = None
        return cls(text, line_number=line, description=description)

    def to_dict(self) -> dict[str, Any]:
        return {"lineNumber": self.line_number, "message": self.description}


EXIT_CODES: dict[type[ActionError], int] = {
    ActionError: 1,
    ConfigError: 2,
    UnsupportedTypeError: 3,
    InvalidResourceError: 4,
    InvalidActionError: 5,
    ConnectFailedError: 6,
    OperationFailedError: 7,
    SQLSyntaxError: 7,
    ParseError: 8,
    UnsupportedError: 9,
    OversizeObjectError: 10,
}


def get_exit_code(exc: ActionError) -> int:
    for cls in exc.__class__.__mro__:
        if cls in EXIT_CODES:
            return EXIT_CODES[cls]  # type: ignore[index]
    return 1


__all__ = [
    "ActionError",
    "ConfigError",
    "UnsupportedTypeError",
    "InvalidResourceError",
    "InvalidActionError",
    "ConnectFailedError",
    "OperationFailedError",
    "ParseError",
    "UnsupportedError",
    "OversizeObjectError",
    "SQLSyntaxError",
    "EXIT_CODES",
    "get_exit_code",
]
