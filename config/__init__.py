"""Configuration package for the adaptive interview engine."""
from .routes import AppConfig, LlmRoute, load_config, oracle_route, resolve_route
from .settings import Settings, settings

__all__ = [
    "AppConfig",
    "LlmRoute",
    "load_config",
    "oracle_route",
    "resolve_route",
    "Settings",
    "settings",
]
