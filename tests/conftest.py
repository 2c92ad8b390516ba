"""
Shared pytest fixtures and configuration for migrate-core tests.

This module provides:
- Settings factory isolated from the developer's environment and .env
- Settings cache cleanup for test isolation
- A migrations folder under ``tmp_path``
- Auto-marking of integration tests
"""

import sys
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

# Ensure migrate_core package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from migrate_core.core.config import BackupConfig, MigrationSettings, clear_settings_cache


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_settings_cache(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop cached settings and any MIGRATE_* variables from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith("MIGRATE_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "migrations"
    folder.mkdir()
    return folder


@pytest.fixture
def make_settings(tmp_path: Path, migrations_dir: Path) -> Callable[..., MigrationSettings]:
    """Build settings pointing at ``migrations_dir``; keyword overrides win."""

    def _make(**overrides: Any) -> MigrationSettings:
        values: dict[str, Any] = {
            "folder": str(migrations_dir),
            "backup": BackupConfig(folder=str(tmp_path / "backups")),
            "locking": {"retry_delay": 0.0},
            "transaction": {"retry_delay": 0.0},
        }
        values.update(overrides)
        return MigrationSettings(_env_file=None, **values)

    return _make
