"""
Tests for environment-driven settings.

Tests cover:
- Optional settings left empty in the environment
"""

import importlib

import pytest

import src.config


@pytest.fixture
def reload_config(monkeypatch):
    """Reload src.config under a patched environment, restoring it afterwards."""

    def _reload(**env):
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        return importlib.reload(src.config)

    yield _reload
    monkeypatch.undo()
    importlib.reload(src.config)


class TestOptionalSettings:
    """Empty values select the unbounded mode."""

    def test_session_deadline_default(self, reload_config, monkeypatch):
        monkeypatch.delenv("SESSION_DEADLINE", raising=False)
        config = reload_config()
        assert config.SESSION_DEADLINE == 120.0

    def test_session_deadline_from_env(self, reload_config):
        config = reload_config(SESSION_DEADLINE="45")
        assert config.SESSION_DEADLINE == 45.0

    def test_empty_session_deadline_waits_for_every_request(self, reload_config):
        config = reload_config(SESSION_DEADLINE="")
        assert config.SESSION_DEADLINE is None

    def test_empty_chunk_size_derives_from_gas(self, reload_config):
        config = reload_config(MAX_ASSETS_PER_REQUEST="")
        assert config.MAX_ASSETS_PER_REQUEST is None
