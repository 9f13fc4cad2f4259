from __future__ import annotations

from typing import Callable, Dict, Optional, Type

from ..config.models import RuntimeConfig
from .base import Connector

VIRTUAL_TYPES = frozenset({"transformer", "aiagent"})

_REGISTRY: Dict[str, Type[Connector]] = {}


def register_connector(*names: str) -> Callable[[Type[Connector]], Type[Connector]]:
    """Register a connector class under one or more resource type tags."""
    tags = [n.lower() for n in names]

    def decorator(cls: Type[Connector]) -> Type[Connector]:
        if "type_name" not in cls.__dict__:
            cls.type_name = tags[0]
        for tag in tags:
            _REGISTRY[tag] = cls
        return cls

    return decorator


def build_connector(type_name: str, config: Optional[RuntimeConfig] = None) -> Optional[Connector]:
    """Return a fresh connector for ``type_name``, or None when there is none.

    Virtual types (transformer, aiagent) are recognised but always yield None.
    """
    if not type_name:
        return None
    cls = _REGISTRY.get(type_name.lower())
    if cls is None:
        return None
    return cls(config)


def connector_class(type_name: str) -> Optional[Type[Connector]]:
    return _REGISTRY.get((type_name or "").lower())


def is_virtual_type(type_name: str) -> bool:
    return (type_name or "").lower() in VIRTUAL_TYPES


def available_connectors() -> list[str]:
    return sorted(_REGISTRY.keys())


__all__ = [
    "VIRTUAL_TYPES",
    "register_connector",
    "build_connector",
    "connector_class",
    "is_virtual_type",
    "available_connectors",
]
