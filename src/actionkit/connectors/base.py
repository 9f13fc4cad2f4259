from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Mapping, Optional, Type

from ..config.loader import get_config
from ..config.models import RuntimeConfig
from ..core.errors import ConnectFailedError, UnsupportedError
from ..core.options import OptionsModel, decode_action, decode_resource
from ..core.results import ConnectionResult, MetaInfoResult, RuntimeResult, ValidateResult
from ..observability.logging import get_logger

Options = Mapping[str, Any]


class Connector(ABC):
    """Stateless executor for one resource type.

    Subclasses declare ``resource_model`` and ``action_model`` (pydantic
    shapes) and implement ``run``. Handles are opened and released inside
    each call; nothing is cached on the instance between calls.
    """

    type_name: ClassVar[str] = ""
    resource_model: ClassVar[Type[OptionsModel]]
    action_model: ClassVar[Type[OptionsModel]]

    def __init__(self, config: Optional[RuntimeConfig] = None) -> None:
        self.config = config or get_config()
        self.log = get_logger()

    def decode_resource(self, options: Optional[Options]) -> Any:
        return decode_resource(self.resource_model, options)

    def decode_action(self, options: Optional[Options]) -> Any:
        return decode_action(self.action_model, options)

    def validate_resource_options(self, options: Optional[Options]) -> ValidateResult:
        self.decode_resource(options)
        return ValidateResult(valid=True)

    def validate_action_options(self, options: Optional[Options]) -> ValidateResult:
        self.decode_action(options)
        return ValidateResult(valid=True)

    def test_connection(self, options: Optional[Options]) -> ConnectionResult:
        raise UnsupportedError(f"{self.type_name} does not support testing connections")

    def get_meta_info(self, options: Optional[Options]) -> MetaInfoResult:
        raise UnsupportedError(f"{self.type_name} does not support meta info")

    @abstractmethod
    def run(self, resource_options: Optional[Options], action_options: Optional[Options]) -> RuntimeResult:
        """Execute the action against the resource."""


def require_module(name: str, extra: str):
    """Import an optional driver module or raise ConnectFailedError naming the extra."""
    import importlib

    try:
        return importlib.import_module(name)
    except ImportError as e:
        top = name.split(".")[0]
        raise ConnectFailedError(f"{top} not installed. Install extras: pip install '.[{extra}]'") from e


__all__ = ["Connector", "Options", "require_module"]
