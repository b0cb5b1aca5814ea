"""Configuration and logging primitives."""

from .config import Settings, get_settings
from .logging import configure_logging, get_tracer, init_tracer, shutdown_tracer

__all__ = [
    "Settings",
    "configure_logging",
    "get_settings",
    "get_tracer",
    "init_tracer",
    "shutdown_tracer",
]
