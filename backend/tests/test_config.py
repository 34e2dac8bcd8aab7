"""Tests for Config defaults and validation."""

import pytest

from config import Config
from conftest import make_config


def test_gateway_urls_default_to_api_base_url(monkeypatch):
    monkeypatch.delenv("FPL_GATEWAY_URLS", raising=False)
    config = Config(fpl_api_base_url="https://fpl.test/api/")

    assert config.fpl_gateway_urls == ["https://fpl.test/api"]


def test_gateway_urls_from_environment(monkeypatch):
    monkeypatch.setenv("FPL_GATEWAY_URLS", "http://localhost:8000/api/fpl/, https://fpl.test/api,,")
    config = Config()

    assert config.fpl_gateway_urls == ["http://localhost:8000/api/fpl", "https://fpl.test/api"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"history_concurrency": 0},
        {"picks_concurrency": -1},
        {"max_retries": -1},
        {"fetch_cache_ttl": 0},
        {"batch_pause_seconds": -0.5},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValueError, match="Configuration errors"):
        make_config(**overrides)
