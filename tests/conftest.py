"""Shared fixtures: a config whose sandbox lives under ``tmp_path``."""

from __future__ import annotations

from pathlib import Path

import pytest

from ziplinegate.config import GateConfig
from ziplinegate.sandbox.masking import SecretMasker
from ziplinegate.sandbox.paths import SandboxPaths

TEST_TOKEN = "zl_test_token_9f8e7d6c5b4a"


@pytest.fixture
def config(tmp_path: Path) -> GateConfig:
    return GateConfig(
        token=TEST_TOKEN,
        endpoint="https://zipline.test",
        tmp_root=tmp_path / "zipline_tmp",
    )


@pytest.fixture
def paths(config: GateConfig) -> SandboxPaths:
    return SandboxPaths(config)


@pytest.fixture
def sandbox(paths: SandboxPaths) -> Path:
    """The caller sandbox root, created."""
    return paths.ensure_root()


@pytest.fixture
def masker() -> SecretMasker:
    return SecretMasker(TEST_TOKEN)


@pytest.fixture
def token() -> str:
    return TEST_TOKEN
