"""
Shared test fixtures and configuration.
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from kustoboot.core.config.settings import DeploymentConfig
from tests.simulated_host import SimulatedEnvironment, scenario


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def config(tmp_state_dir: Path) -> DeploymentConfig:
    """Default config with every path under tmp."""
    return DeploymentConfig(
        state_dir=tmp_state_dir,
        systemd_unit_dir=tmp_state_dir.parent / "systemd",
    )


@pytest.fixture
def make_env(tmp_path: Path) -> Callable[..., SimulatedEnvironment]:
    """Build a SimulatedEnvironment from a named scenario."""

    def _make(name: str = "complete", **changes) -> SimulatedEnvironment:
        return SimulatedEnvironment(scenario(name, **changes), tmp_path)

    return _make
