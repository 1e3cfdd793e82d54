"""Root pytest configuration for all tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from chatstream.config.schema import Config
from chatstream.messages.model import RiskLevel
from chatstream.permissions.gate import PermissionGate
from chatstream.permissions.store import DecisionStore
from chatstream.session.registry import SessionRegistry
from chatstream.tools.policy import ToolPolicy

# Redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture
def config() -> Config:
    """Default config, independent of files on the test machine."""
    return Config()


@pytest.fixture
def decision_store(tmp_path: Path) -> DecisionStore:
    """Decision store persisting workspace decisions under tmp_path."""
    return DecisionStore(tmp_path / "permissions")


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def gate(registry: SessionRegistry, decision_store: DecisionStore) -> PermissionGate:
    return PermissionGate(registry, decision_store)


@pytest.fixture
def policy() -> ToolPolicy:
    """Policy with a read-only tool family and one forbidden tool."""
    policy = ToolPolicy()
    policy.add_rule("read_*", RiskLevel.READ_ONLY)
    policy.add_rule("format_disk", RiskLevel.FORBIDDEN)
    return policy
