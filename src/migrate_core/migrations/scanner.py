"""Filesystem discovery of migration scripts.

``FileSystemScanner.scan()`` reads the migrations folder and the tracking
store and returns a ``ScriptSet`` with ``pending`` and ``ignored`` already
derived by the selector.

File names must match ``file_pattern`` with the version in capture group 1
(default ``^V(\\d{12})_``). Hidden files, ``.down.sql`` companions and files
no loader understands are skipped. Two files with the same version are a
configuration error.
"""

from __future__ import annotations

import re
from collections import defaultdict
from pathlib import Path
from typing import Any

from migrate_core.core.config import MigrationSettings
from migrate_core.core.errors import ConfigError, ValidationError
from migrate_core.core.logging import get_logger
from migrate_core.core.models import MigrationInfo, MigrationScript, ScriptSet
from migrate_core.execution.selector import ScriptSelector
from migrate_core.migrations.loaders import LoaderRegistry

logger = get_logger(__name__)


class FileSystemScanner:
    def __init__(
        self,
        settings: MigrationSettings,
        schema_version: Any,
        registry: LoaderRegistry | None = None,
        selector: ScriptSelector | None = None,
    ) -> None:
        self.settings = settings
        self.schema_version = schema_version
        self.registry = registry or LoaderRegistry.default()
        self.selector = selector or ScriptSelector()
        self._pattern = re.compile(settings.file_pattern)

    @property
    def folder(self) -> Path:
        return Path(self.settings.folder)

    def _list_files(self) -> list[Path]:
        if not self.folder.is_dir():
            raise ConfigError(f"Migrations folder does not exist: {self.folder}")

        walker = self.folder.rglob("*") if self.settings.recursive else self.folder.iterdir()
        files = [
            p
            for p in walker
            if p.is_file() and not any(part.startswith(".") for part in p.relative_to(self.folder).parts)
        ]
        if not files:
            logger.warning("scanner.folder_empty", folder=str(self.folder))
        return sorted(files)

    def find_scripts(self) -> list[MigrationScript]:
        """All migration scripts on disk, ascending by timestamp."""
        scripts: list[MigrationScript] = []
        for path in self._list_files():
            match = self._pattern.search(path.name)
            if match is None:
                continue
            if not self.registry.can_handle(str(path)):
                continue
            scripts.append(MigrationScript(name=path.name, filepath=str(path), timestamp=int(match.group(1))))

        self._check_duplicates(scripts)
        return sorted(scripts, key=lambda s: s.timestamp)

    @staticmethod
    def _check_duplicates(scripts: list[MigrationScript]) -> None:
        by_timestamp: dict[int, list[str]] = defaultdict(list)
        for script in scripts:
            by_timestamp[script.timestamp].append(script.name)

        duplicates = {ts: names for ts, names in by_timestamp.items() if len(names) > 1}
        if duplicates:
            detail = "; ".join(f"{ts}: {', '.join(names)}" for ts, names in sorted(duplicates.items()))
            raise ValidationError(f"Duplicate migration timestamps found ({detail})").with_context(
                operation="scan",
                duplicates={str(ts): names for ts, names in duplicates.items()},
            )

    def _from_record(self, info: MigrationInfo, on_disk: dict[int, MigrationScript]) -> MigrationScript:
        match = on_disk.get(info.timestamp)
        filepath = match.filepath if match else str(self.folder / info.name)
        return MigrationScript(
            name=info.name,
            filepath=filepath,
            timestamp=info.timestamp,
            started_at=info.started_at,
            finished_at=info.finished_at,
            username=info.username,
            result=info.result,
            checksum=info.checksum,
        )

    async def get_migrated(self, all_scripts: list[MigrationScript] | None = None) -> list[MigrationScript]:
        on_disk = {s.timestamp: s for s in (all_scripts if all_scripts is not None else self.find_scripts())}
        records = await self.schema_version.get_all_executed()
        return sorted((self._from_record(r, on_disk) for r in records), key=lambda s: s.timestamp)

    async def scan(self) -> ScriptSet:
        all_scripts = self.find_scripts()
        migrated = await self.get_migrated(all_scripts)

        scripts = ScriptSet(
            all=all_scripts,
            migrated=migrated,
            pending=self.selector.get_pending(migrated, all_scripts),
            ignored=self.selector.get_ignored(migrated, all_scripts),
        )
        logger.debug(
            "scanner.scanned",
            total=len(scripts.all),
            migrated=len(scripts.migrated),
            pending=len(scripts.pending),
            ignored=len(scripts.ignored),
        )
        return scripts

    async def find_before_migrate_script(self) -> MigrationScript | None:
        """The setup script named ``before_migrate_name`` (any supported extension)."""
        name = self.settings.before_migrate_name
        if not name or not self.folder.is_dir():
            return None
        for path in sorted(self.folder.iterdir()):
            if path.is_file() and path.name.split(".", 1)[0] == name and self.registry.can_handle(str(path)):
                return MigrationScript(name=name, filepath=str(path), timestamp=0)
        return None
