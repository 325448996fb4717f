"""Tests for LAPIS_* environment configuration.

Covers:
- get_mode() with valid values, default, and unknown values
- numeric settings: defaults, overrides, malformed and non-positive values
"""

from __future__ import annotations

import logging

import pytest

from lapis.config import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_FLATTEN_TOLERANCE,
    DEFAULT_MAX_SOURCE_BYTES,
    get_mode,
    get_settings,
)

_ENV = (
    "LAPIS_MODE",
    "LAPIS_FONT_BASE",
    "LAPIS_FETCH_TIMEOUT",
    "LAPIS_MAX_SOURCE_BYTES",
    "LAPIS_FLATTEN_TOLERANCE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


class TestGetMode:
    def test_default_is_local(self) -> None:
        assert get_mode() == "local"

    @pytest.mark.parametrize("raw,expected", [("local", "local"), ("cloud", "cloud"), (" CLOUD ", "cloud")])
    def test_valid_values(self, monkeypatch, raw: str, expected: str) -> None:
        monkeypatch.setenv("LAPIS_MODE", raw)
        assert get_mode() == expected

    def test_unknown_falls_back_with_warning(self, monkeypatch, caplog) -> None:
        monkeypatch.setenv("LAPIS_MODE", "staging")
        with caplog.at_level(logging.WARNING, logger="lapis"):
            assert get_mode() == "local"
        assert "staging" in caplog.text


class TestGetSettings:
    def test_defaults(self) -> None:
        settings = get_settings()
        assert settings.mode == "local"
        assert settings.fetch_timeout == DEFAULT_FETCH_TIMEOUT
        assert settings.max_source_bytes == DEFAULT_MAX_SOURCE_BYTES
        assert settings.flatten_tolerance == DEFAULT_FLATTEN_TOLERANCE
        assert settings.font_base.endswith("fonts")

    def test_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("LAPIS_FONT_BASE", "https://cdn.example.com/fonts")
        monkeypatch.setenv("LAPIS_FETCH_TIMEOUT", "2.5")
        monkeypatch.setenv("LAPIS_MAX_SOURCE_BYTES", "2048")
        monkeypatch.setenv("LAPIS_FLATTEN_TOLERANCE", "0.01")
        settings = get_settings()
        assert settings.font_base == "https://cdn.example.com/fonts"
        assert settings.fetch_timeout == 2.5
        assert settings.max_source_bytes == 2048
        assert settings.flatten_tolerance == 0.01

    @pytest.mark.parametrize("raw", ["soon", "-1", "0"])
    def test_bad_numbers_fall_back(self, monkeypatch, caplog, raw: str) -> None:
        monkeypatch.setenv("LAPIS_FETCH_TIMEOUT", raw)
        with caplog.at_level(logging.WARNING, logger="lapis"):
            assert get_settings().fetch_timeout == DEFAULT_FETCH_TIMEOUT
        assert "LAPIS_FETCH_TIMEOUT" in caplog.text

    def test_blank_value_uses_default(self, monkeypatch) -> None:
        monkeypatch.setenv("LAPIS_MAX_SOURCE_BYTES", "  ")
        assert get_settings().max_source_bytes == DEFAULT_MAX_SOURCE_BYTES

    def test_settings_reread_each_call(self, monkeypatch) -> None:
        assert get_settings().mode == "local"
        monkeypatch.setenv("LAPIS_MODE", "cloud")
        assert get_settings().mode == "cloud"
