"""Tests for ziplinegate config loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from ziplinegate.config import MIB, GateConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "ZIPLINE_TOKEN",
        "ZIPLINE_ENDPOINT",
        "ZIPLINE_TMP_DIR",
        "ZIPLINE_DISABLE_SANDBOXING",
    ):
        monkeypatch.delenv(name, raising=False)


class TestGateConfig:
    def test_defaults(self):
        cfg = GateConfig(token="abc")
        assert cfg.endpoint == "http://localhost:3000"
        assert cfg.tmp_root == Path.home() / ".zipline_tmp"
        assert cfg.disable_sandboxing is False
        assert cfg.memory_threshold_bytes == 5 * MIB
        assert cfg.max_payload_bytes == 100 * MIB
        assert cfg.tmp_max_read_bytes == 1 * MIB
        assert cfg.cache_ttl_seconds == 30
        assert cfg.sandbox_max_age_seconds == 24 * 3600
        assert cfg.lock_timeout_seconds == 30 * 60

    def test_token_hidden_from_repr(self):
        cfg = GateConfig(token="super-secret-value")
        assert "super-secret-value" not in repr(cfg)
        assert cfg.secret == "super-secret-value"

    def test_endpoint_trailing_slash_stripped(self):
        assert GateConfig(token="t", endpoint="https://z.example/ ").endpoint == "https://z.example"

    def test_tmp_root_expanded(self):
        cfg = GateConfig(token="t", tmp_root="~/zt")
        assert cfg.tmp_root == Path.home() / "zt"

    def test_blank_token_rejected(self):
        with pytest.raises(ValidationError):
            GateConfig(token="   ")

    @pytest.mark.parametrize(
        "field", ["memory_threshold_bytes", "max_payload_bytes", "cache_ttl_seconds"]
    )
    def test_non_positive_rejected(self, field):
        with pytest.raises(ValidationError):
            GateConfig(token="t", **{field: 0})

    def test_threshold_above_ceiling_rejected(self):
        with pytest.raises(ValidationError):
            GateConfig(token="t", memory_threshold_bytes=10, max_payload_bytes=5)


class TestLoadConfig:
    def test_env_only(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ZIPLINE_TOKEN", "env-token")
        monkeypatch.setenv("ZIPLINE_ENDPOINT", "https://files.example.com/")
        monkeypatch.setenv("ZIPLINE_TMP_DIR", str(tmp_path))
        cfg = load_config()
        assert cfg.secret == "env-token"
        assert cfg.endpoint == "https://files.example.com"
        assert cfg.tmp_root == tmp_path

    def test_missing_token(self):
        with pytest.raises(ValueError, match="ZIPLINE_TOKEN is required"):
            load_config()

    def test_yaml_file_with_env_override(self, monkeypatch, tmp_path):
        path = tmp_path / "ziplinegate.yaml"
        path.write_text(
            yaml.dump(
                {
                    "token": "file-token",
                    "endpoint": "https://file.example",
                    "memory_threshold_bytes": 1024,
                    "cache_ttl_seconds": 10,
                }
            )
        )
        monkeypatch.setenv("ZIPLINE_TOKEN", "env-token")

        cfg = load_config(path)

        assert cfg.secret == "env-token"
        assert cfg.endpoint == "https://file.example"
        assert cfg.memory_threshold_bytes == 1024
        assert cfg.cache_ttl_seconds == 10

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_needs_env_token(self, monkeypatch, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        monkeypatch.setenv("ZIPLINE_TOKEN", "t")
        assert load_config(path).secret == "t"

    @pytest.mark.parametrize(("value", "expected"), [("true", True), ("1", True), ("no", False)])
    def test_disable_sandboxing_env(self, monkeypatch, value, expected):
        monkeypatch.setenv("ZIPLINE_TOKEN", "t")
        monkeypatch.setenv("ZIPLINE_DISABLE_SANDBOXING", value)
        assert load_config().disable_sandboxing is expected

    def test_invalid_values_raise_value_error(self, monkeypatch, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump({"max_payload_bytes": -1}))
        monkeypatch.setenv("ZIPLINE_TOKEN", "t")
        with pytest.raises(ValueError):
            load_config(path)
