import json

import pytest

from config import load_config, oracle_route, resolve_route
from config.settings import Settings


def test_settings_defaults():
    settings = Settings(_env_file=None)
    assert settings.DB_PATH.endswith(".db")
    assert settings.MAX_TURNS == 15
    assert settings.MIN_TURNS == 5
    assert settings.SESSION_IDLE_TIMEOUT_HOURS == 24.0
    assert 30.0 <= settings.ORACLE_TIMEOUT_S <= 60.0
    assert settings.REINFORCE_PROBABILITY == 0.35


@pytest.mark.parametrize("timeout", [5.0, 61.0])
def test_oracle_timeout_outside_bounds_is_rejected(timeout):
    with pytest.raises(ValueError):
        Settings(_env_file=None, ORACLE_TIMEOUT_S=timeout)


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("MAX_TURNS", "8")
    monkeypatch.setenv("ORACLE_BASE_URL", "http://oracle.local")
    settings = Settings(_env_file=None)
    assert settings.MAX_TURNS == 8
    assert settings.ORACLE_BASE_URL == "http://oracle.local"


def test_no_base_url_means_no_oracle():
    settings = Settings(_env_file=None, ORACLE_BASE_URL=None, ORACLE_CONFIG_PATH=None)
    assert oracle_route(settings) is None


def test_route_from_settings():
    settings = Settings(
        _env_file=None,
        ORACLE_BASE_URL="http://oracle.local",
        ORACLE_CONFIG_PATH=None,
        ORACLE_MODEL="m1",
        ORACLE_MAX_RETRIES=2,
    )
    route = oracle_route(settings)
    assert route.base_url == "http://oracle.local"
    assert route.model == "m1"
    assert route.max_retries == 2
    assert route.response_format == "json_object"


def test_route_from_json_file(tmp_path):
    path = tmp_path / "routes.json"
    path.write_text(
        json.dumps(
            {
                "llm_routes": {
                    "local": {
                        "name": "local",
                        "base_url": "http://127.0.0.1:8080",
                        "endpoint": "/v1/chat/completions",
                        "model": "qwen",
                        "timeout_s": 30,
                    }
                },
                "registry": {"oracle": "local"},
            }
        ),
        encoding="utf-8",
    )
    settings = Settings(_env_file=None, ORACLE_CONFIG_PATH=str(path))
    route = oracle_route(settings)
    assert route.name == "local"
    assert route.timeout_s == 30

    cfg = load_config(path)
    with pytest.raises(KeyError):
        resolve_route(cfg, "missing")
