from .config import BotConfig, load_config
from .log import init_logging

__all__ = ["BotConfig", "load_config", "init_logging"]
