"""
Tests for the TTL cache and configuration helpers.
"""

from unittest.mock import Mock

import pytest

from semantic_core.cache import TTLCache
from semantic_core.config import load_config, resolve_env_vars


class TestTTLCache:
    """Test lazy refresh, expiry and stale fallback."""

    @pytest.fixture
    def cache(self, clock):
        return TTLCache(60, clock=clock)

    def test_loads_once_within_ttl(self, cache, clock):
        loader = Mock(side_effect=[{"v": 1}, {"v": 2}])

        first = cache.get_or_refresh(loader)
        clock.advance(59)
        second = cache.get_or_refresh(loader)

        assert first is second
        assert loader.call_count == 1

    def test_refreshes_after_ttl(self, cache, clock):
        loader = Mock(side_effect=[{"v": 1}, {"v": 2}])

        cache.get_or_refresh(loader)
        clock.advance(60)

        assert cache.is_stale
        assert cache.get_or_refresh(loader) == {"v": 2}

    def test_failed_refresh_serves_stale_value(self, cache, clock):
        cache.get_or_refresh(lambda: "old")
        clock.advance(120)

        value = cache.get_or_refresh(Mock(side_effect=RuntimeError("db down")))

        assert value == "old"

    def test_failed_first_load_raises(self, cache):
        with pytest.raises(RuntimeError):
            cache.get_or_refresh(Mock(side_effect=RuntimeError("db down")))
        assert cache.is_empty

    def test_invalidate_forces_reload(self, cache):
        loader = Mock(side_effect=["a", "b"])

        cache.get_or_refresh(loader)
        cache.invalidate()

        assert cache.peek() is None
        assert cache.get_or_refresh(loader) == "b"


class TestConfig:
    """Test configuration loading."""

    def test_resolve_env_vars_nested(self, monkeypatch):
        monkeypatch.setenv("SC_TEST_HOST", "db.internal")

        resolved = resolve_env_vars({
            "url": "postgresql://${SC_TEST_HOST}/core",
            "hosts": ["${SC_TEST_HOST}", 5],
            "missing": "${SC_TEST_UNSET}",
        })

        assert resolved["url"] == "postgresql://db.internal/core"
        assert resolved["hosts"] == ["db.internal", 5]
        assert resolved["missing"] == "${SC_TEST_UNSET}"

    def test_load_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SC_TEST_TTL", "42")
        path = tmp_path / "config.yaml"
        path.write_text("catalog:\n  cache_ttl_seconds: 600\nname: \"${SC_TEST_TTL}\"\n")

        config = load_config(str(path))

        assert config["catalog"]["cache_ttl_seconds"] == 600
        assert config["name"] == "42"

    def test_load_config_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))
