"""Pytest configuration for opencode-loop tests."""

import os
from pathlib import Path

import pytest

_ENV_PREFIX = "OPENCODE_LOOP_"


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Redirects the user config directory to /tmp so a developer's
    ~/.config/opencode-loop/.env never leaks into tests.
    """
    test_config_dir = Path("/tmp/opencode-loop-test-config")
    test_config_dir.mkdir(parents=True, exist_ok=True)
    os.environ["OPENCODE_LOOP_CONFIG_DIR"] = str(test_config_dir)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Default unmarked tests to unit category."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration")):
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_loop_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove OPENCODE_LOOP_* settings (except the config dir) for each test."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIX) and name != "OPENCODE_LOOP_CONFIG_DIR":
            monkeypatch.delenv(name, raising=False)
