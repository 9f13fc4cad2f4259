"""Core abstractions shared across the action runtime."""

from . import errors as errors
from . import results as results
from .errors import *  # noqa: F401,F403
from .results import *  # noqa: F401,F403

combined = list(dict.fromkeys(list(errors.__all__) + list(results.__all__)))
__all__ = tuple(combined)
