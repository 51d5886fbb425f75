"""Tests for configuration loading, schema and cross-field validation."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest
import yaml
from jsonschema import ValidationError, validate

from leaddesk.config.leaddesk_config import (
    _SCHEMA_PATH,
    ConfigValidationError,
    LeaddeskConfig,
    get_config,
)
from leaddesk.config.settings import build_settings

SECRET = "config-test-secret-0123456789"


def _write_config(tmp_path: Path, overrides: dict | None = None) -> Path:
    cfg = {
        "server": {"external_url": "https://leads.example.com"},
        "database": {"database": "leaddesk", "user": "leaddesk"},
        "admin_api": {"token_secret": SECRET},
    }
    if overrides:
        _deep_merge(cfg, overrides)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
    return path


def _deep_merge(base: dict, overrides: dict) -> None:
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _schema() -> dict:
    return json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))


class TestLoading:
    def test_minimal_config(self, tmp_config_file):
        cfg = LeaddeskConfig(config_file=tmp_config_file)
        assert get_config() is cfg
        s = cfg.settings
        assert s.server.external_url == "https://leads.example.com"
        assert s.admin_api.base_path == "/api/admin"
        assert s.public_api.base_path == "/api"
        assert s.security.login_lockout.max_attempts == 5
        assert s.notifications.recipients == ()

    def test_get_config_before_init(self):
        with pytest.raises(RuntimeError, match="not initialised"):
            get_config()

    def test_env_var_default(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LEADDESK_TEST_LEVEL", raising=False)
        path = _write_config(tmp_path, {"logging": {"level": "${LEADDESK_TEST_LEVEL:-DEBUG}"}})
        assert LeaddeskConfig(config_file=path).settings.logging.level == "DEBUG"

    def test_env_var_set(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEADDESK_TEST_SMTP_HOST", "mail.internal")
        path = _write_config(tmp_path, {"smtp": {"host": "${LEADDESK_TEST_SMTP_HOST}"}})
        assert LeaddeskConfig(config_file=path).settings.smtp.host == "mail.internal"

    def test_settings_are_frozen(self):
        settings = build_settings({})
        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.server.port = 1


class TestCrossFieldValidation:
    def test_missing_token_secret(self, tmp_path):
        path = _write_config(tmp_path, {"admin_api": {"token_secret": ""}})
        with pytest.raises(ConfigValidationError, match="token_secret is required"):
            LeaddeskConfig(config_file=path)

    def test_short_token_secret(self, tmp_path):
        path = _write_config(tmp_path, {"admin_api": {"token_secret": "short"}})
        with pytest.raises(ConfigValidationError, match="too short"):
            LeaddeskConfig(config_file=path)

    def test_trailing_slash_url(self, tmp_path):
        path = _write_config(tmp_path, {"server": {"external_url": "https://x.example.com/"}})
        with pytest.raises(ConfigValidationError, match="must not end with"):
            LeaddeskConfig(config_file=path)

    def test_same_base_paths(self, tmp_path):
        path = _write_config(
            tmp_path,
            {"admin_api": {"base_path": "/api/"}, "public_api": {"base_path": "/api"}},
        )
        with pytest.raises(ConfigValidationError, match="must differ"):
            LeaddeskConfig(config_file=path)

    def test_smtp_requires_host(self, tmp_path):
        path = _write_config(tmp_path, {"smtp": {"enabled": True, "from_address": "a@b.io"}})
        with pytest.raises(ConfigValidationError, match="smtp.host"):
            LeaddeskConfig(config_file=path)

    def test_pool_bounds(self, tmp_path):
        path = _write_config(
            tmp_path,
            {"database": {"min_connections": 20, "max_connections": 5}},
        )
        with pytest.raises(ConfigValidationError) as exc_info:
            LeaddeskConfig(config_file=path)
        assert any("min_connections" in e for e in exc_info.value.errors)

    def test_page_sizes(self, tmp_path):
        path = _write_config(
            tmp_path,
            {"admin_api": {"default_page_size": 500, "max_page_size": 100}},
        )
        with pytest.raises(ConfigValidationError, match="default_page_size"):
            LeaddeskConfig(config_file=path)


class TestSchema:
    def test_minimal_is_valid(self, minimal_config_data):
        validate(instance=minimal_config_data, schema=_schema())

    def test_unknown_section_rejected(self, minimal_config_data):
        minimal_config_data["server"]["colour"] = "blue"
        with pytest.raises(ValidationError, match="additionalProperties|Additional properties"):
            validate(instance=minimal_config_data, schema=_schema())

    def test_port_range(self, minimal_config_data):
        minimal_config_data["database"]["port"] = 70000
        with pytest.raises(ValidationError, match="maximum"):
            validate(instance=minimal_config_data, schema=_schema())

    def test_base_path_pattern(self, minimal_config_data):
        minimal_config_data["admin_api"]["base_path"] = "admin"
        with pytest.raises(ValidationError, match="match"):
            validate(instance=minimal_config_data, schema=_schema())
