from .loader import get_config, load_config, set_config
from .models import RuntimeConfig

__all__ = ["RuntimeConfig", "load_config", "get_config", "set_config"]
