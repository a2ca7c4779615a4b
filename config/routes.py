"""Oracle route configuration loaded from JSON or settings."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .settings import Settings

ORACLE_ROUTE_KEY = "oracle"


class LlmRoute(BaseModel):
    """LLM endpoint configuration."""

    name: str
    base_url: str
    endpoint: str
    model: str
    timeout_s: float = Field(ge=30.0, le=60.0)
    max_retries: int = Field(default=1, ge=0)
    retry_base_delay_s: float = Field(default=0.5, ge=0.0)
    api_key_env: str | None = None
    response_format: str | None = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)


class AppConfig(BaseModel):
    """Application configuration root."""

    llm_routes: Dict[str, LlmRoute]
    registry: Dict[str, str] = Field(default_factory=dict)


def load_config(path: Path) -> AppConfig:
    """Load configuration from disk."""

    data = path.read_text(encoding="utf-8")
    return AppConfig.model_validate_json(data)


def resolve_route(cfg: AppConfig, target: str = ORACLE_ROUTE_KEY) -> LlmRoute:
    """Return the route bound to ``target`` in the registry."""

    route_id = cfg.registry.get(target, target)
    if route_id not in cfg.llm_routes:
        raise KeyError(f"Route '{route_id}' missing for '{target}'")
    return cfg.llm_routes[route_id]


def oracle_route(settings: Settings) -> Optional[LlmRoute]:
    """Resolve the oracle route from the JSON file or the env settings.

    Returns ``None`` when no endpoint is configured; callers then run on
    fallback templates and empty extractions only.
    """

    if settings.ORACLE_CONFIG_PATH:
        return resolve_route(load_config(Path(settings.ORACLE_CONFIG_PATH)))
    if not settings.ORACLE_BASE_URL:
        return None
    return LlmRoute(
        name=ORACLE_ROUTE_KEY,
        base_url=settings.ORACLE_BASE_URL,
        endpoint=settings.ORACLE_ENDPOINT,
        model=settings.ORACLE_MODEL,
        timeout_s=settings.ORACLE_TIMEOUT_S,
        max_retries=settings.ORACLE_MAX_RETRIES,
        retry_base_delay_s=settings.ORACLE_RETRY_BASE_DELAY_S,
        api_key_env=settings.ORACLE_API_KEY_ENV,
        response_format="json_object",
    )
