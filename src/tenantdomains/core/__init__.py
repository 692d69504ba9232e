"""Core."""

from .config import DomainsConfig, clear_config, get_config, load_config_from_file
from .logging import configure_logging

__all__ = [
    "DomainsConfig",
    "clear_config",
    "configure_logging",
    "get_config",
    "load_config_from_file",
]
