"""Script selection: which migrations are pending, ignored or to be reverted.

Pure functions over two lists: ``migrated`` (tracking-store truth) and
``all`` (filesystem truth). Identity is the script ``timestamp``; names and
paths play no part in selection.

Rules:
    - Nothing migrated yet: everything on disk is pending, nothing ignored.
    - Otherwise ``last`` is the highest migrated timestamp. A script on disk
      that was never executed is *pending* when newer than ``last`` and
      *ignored* (out-of-order, never auto-run) otherwise.
"""

from __future__ import annotations

from collections.abc import Sequence

from migrate_core.core.models import MigrationScript


def _new_scripts(migrated: Sequence[MigrationScript], all_scripts: Sequence[MigrationScript]) -> list[MigrationScript]:
    done = {m.timestamp for m in migrated}
    return [s for s in all_scripts if s.timestamp not in done]


def get_pending(migrated: Sequence[MigrationScript], all_scripts: Sequence[MigrationScript]) -> list[MigrationScript]:
    """Scripts newer than the last migrated one, in input order."""
    if not migrated:
        return list(all_scripts)
    last = max(m.timestamp for m in migrated)
    return [s for s in _new_scripts(migrated, all_scripts) if s.timestamp > last]


def get_ignored(migrated: Sequence[MigrationScript], all_scripts: Sequence[MigrationScript]) -> list[MigrationScript]:
    """Scripts on disk, never executed, older than the last migrated one."""
    if not migrated:
        return []
    last = max(m.timestamp for m in migrated)
    return [s for s in _new_scripts(migrated, all_scripts) if s.timestamp <= last]


def get_pending_up_to(
    migrated: Sequence[MigrationScript],
    all_scripts: Sequence[MigrationScript],
    target: int,
) -> list[MigrationScript]:
    """Pending scripts with ``timestamp <= target``, ascending."""
    pending = [s for s in get_pending(migrated, all_scripts) if s.timestamp <= target]
    return sorted(pending, key=lambda s: s.timestamp)


def get_migrated_down_to(migrated: Sequence[MigrationScript], target: int) -> list[MigrationScript]:
    """Migrated scripts with ``timestamp > target``, descending (rollback order)."""
    return sorted(
        (m for m in migrated if m.timestamp > target),
        key=lambda s: s.timestamp,
        reverse=True,
    )


def get_migrated_in_range(
    migrated: Sequence[MigrationScript],
    from_: int,
    to: int,
) -> list[MigrationScript]:
    """Migrated scripts with ``from_ < timestamp <= to``, descending."""
    return sorted(
        (m for m in migrated if from_ < m.timestamp <= to),
        key=lambda s: s.timestamp,
        reverse=True,
    )


class ScriptSelector:
    """Injectable wrapper over the selection functions."""

    def get_pending(self, migrated, all_scripts):
        return get_pending(migrated, all_scripts)

    def get_ignored(self, migrated, all_scripts):
        return get_ignored(migrated, all_scripts)

    def get_pending_up_to(self, migrated, all_scripts, target: int):
        return get_pending_up_to(migrated, all_scripts, target)

    def get_migrated_down_to(self, migrated, target: int):
        return get_migrated_down_to(migrated, target)

    def get_migrated_in_range(self, migrated, from_: int, to: int):
        return get_migrated_in_range(migrated, from_, to)
