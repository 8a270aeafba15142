"""Configuration loading for ziplinegate.

Reads an optional YAML file and applies environment variable overrides.  The
resulting :class:`GateConfig` is passed explicitly into every component; there
is no module-level credential or limit state.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

TOKEN_ENV = "ZIPLINE_TOKEN"
ENDPOINT_ENV = "ZIPLINE_ENDPOINT"
TMP_DIR_ENV = "ZIPLINE_TMP_DIR"
DISABLE_SANDBOXING_ENV = "ZIPLINE_DISABLE_SANDBOXING"


class GateConfig(BaseModel):
    """Credential, endpoint and limits for one gate instance."""

    token: SecretStr
    endpoint: str = "http://localhost:3000"
    tmp_root: Path = Field(default_factory=lambda: Path.home() / ".zipline_tmp")
    # Single-user hosts may share <tmp_root> instead of per-credential sandboxes.
    disable_sandboxing: bool = False

    # ── Staging limits ───────────────────────────────────────────────────────
    memory_threshold_bytes: int = 5 * MIB
    max_payload_bytes: int = 100 * MIB
    tmp_max_read_bytes: int = 1 * MIB

    # ── Cache / cleanup timings (seconds) ────────────────────────────────────
    cache_ttl_seconds: float = 30.0
    sandbox_max_age_seconds: float = 24 * 60 * 60
    lock_timeout_seconds: float = 30 * 60
    sweep_timeout_seconds: float = 30.0
    request_timeout_seconds: float = 30.0

    @field_validator("token")
    @classmethod
    def _validate_token(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError(f"{TOKEN_ENV} must not be empty")
        return v

    @field_validator("endpoint")
    @classmethod
    def _strip_endpoint(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("tmp_root")
    @classmethod
    def _expand_tmp_root(cls, v: Path) -> Path:
        return v.expanduser().absolute()

    @field_validator(
        "memory_threshold_bytes",
        "max_payload_bytes",
        "tmp_max_read_bytes",
        "cache_ttl_seconds",
        "sandbox_max_age_seconds",
        "lock_timeout_seconds",
        "sweep_timeout_seconds",
        "request_timeout_seconds",
    )
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("limits and timeouts must be positive")
        return v

    @model_validator(mode="after")
    def _threshold_below_ceiling(self) -> GateConfig:
        if self.memory_threshold_bytes > self.max_payload_bytes:
            raise ValueError("memory_threshold_bytes must not exceed max_payload_bytes")
        return self

    @property
    def secret(self) -> str:
        return self.token.get_secret_value()


def load_config(config_path: Path | None = None) -> GateConfig:
    """Build a :class:`GateConfig` from an optional YAML file plus the environment.

    Environment variables win over file values.

    Raises:
        FileNotFoundError: If ``config_path`` is given but does not exist.
        ValueError: If no token is configured or validation fails.
    """
    raw: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"ziplinegate config not found: {config_path}")
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    token = os.environ.get(TOKEN_ENV)
    if token:
        raw["token"] = token
    if not raw.get("token"):
        raise ValueError(f"Environment variable {TOKEN_ENV} is required.")

    endpoint = os.environ.get(ENDPOINT_ENV)
    if endpoint:
        raw["endpoint"] = endpoint

    tmp_dir = os.environ.get(TMP_DIR_ENV)
    if tmp_dir:
        raw["tmp_root"] = tmp_dir

    disable = os.environ.get(DISABLE_SANDBOXING_ENV)
    if disable is not None:
        raw["disable_sandboxing"] = disable.lower() in ("1", "true", "yes")

    config = GateConfig(**raw)
    logger.info(
        "Loaded ziplinegate config: endpoint=%s sandboxing=%s",
        config.endpoint,
        "disabled" if config.disable_sandboxing else "enabled",
    )
    return config
