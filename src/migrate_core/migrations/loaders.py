"""Turn migration files into runnable scripts.

Two loaders ship by default:

``PythonScriptLoader``
    Imports a ``.py`` file and instantiates the single class defined in it
    that has an ``up`` method::

        # migrations/V202401010000_create_users.py
        class CreateUsers:
            async def up(self, db, info, handler):
                await db.execute_sql("CREATE TABLE users (id INTEGER PRIMARY KEY)")
                return "users table created"

            async def down(self, db, info, handler):
                await db.execute_sql("DROP TABLE users")

``SqlScriptLoader``
    Reads ``V..._name.up.sql`` (and an optional sibling ``.down.sql``) and
    executes the text through the handle's ``execute_sql``. Plain SQL files
    may carry their own BEGIN/COMMIT, so they are flagged
    ``manages_own_transaction``.
"""

from __future__ import annotations

import importlib.util
import inspect
import re
import sys
from pathlib import Path
from typing import Any

from migrate_core.core.errors import ExecutionError, ScriptLoadError
from migrate_core.core.logging import get_logger
from migrate_core.core.models import MigrationInfo, MigrationScript, ValidationCode
from migrate_core.core.protocols import RunnableScript, supports_sql

logger = get_logger(__name__)

_UP_SQL = re.compile(r"\.up\.sql$", re.IGNORECASE)
_DOWN_SQL = re.compile(r"\.down\.sql$", re.IGNORECASE)
_SQL_PREVIEW = 200


class ScriptLoader:
    """Base class for file-type specific loaders."""

    name = "loader"

    def can_handle(self, filepath: str) -> bool:
        raise NotImplementedError

    async def load(self, script: MigrationScript) -> RunnableScript:
        raise NotImplementedError


# =============================================================================
# PYTHON
# =============================================================================


class PythonScriptLoader(ScriptLoader):
    name = "python"

    def can_handle(self, filepath: str) -> bool:
        return filepath.lower().endswith(".py")

    def _import(self, script: MigrationScript) -> Any:
        module_name = f"_migrate_core_script_{Path(script.filepath).stem}_{script.timestamp}"
        spec = importlib.util.spec_from_file_location(module_name, script.filepath)
        if spec is None or spec.loader is None:
            raise ScriptLoadError(
                f"{script.name}: cannot import {script.filepath}",
                code=ValidationCode.IMPORT_FAILED.value,
            )
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise ScriptLoadError(
                f"{script.name}: import failed: {e}",
                code=ValidationCode.IMPORT_FAILED.value,
                cause=e,
            ) from e
        return module

    async def load(self, script: MigrationScript) -> RunnableScript:
        if not Path(script.filepath).exists():
            raise ScriptLoadError(
                f"{script.name}: file not found: {script.filepath}",
                code=ValidationCode.FILE_NOT_FOUND.value,
            )

        module = self._import(script)
        candidates = [
            obj
            for _, obj in inspect.getmembers(module, inspect.isclass)
            if obj.__module__ == module.__name__ and callable(getattr(obj, "up", None))
        ]

        if not candidates:
            raise ScriptLoadError(
                f"{script.name}: no migration class with an up() method found",
                code=ValidationCode.NO_EXPORT.value,
            )
        if len(candidates) > 1:
            names = ", ".join(c.__name__ for c in candidates)
            raise ScriptLoadError(
                f"{script.name}: multiple migration classes found ({names}); expected exactly one",
                code=ValidationCode.MULTIPLE_EXPORTS.value,
            )

        try:
            instance = candidates[0]()
        except Exception as e:
            raise ScriptLoadError(
                f"{script.name}: cannot instantiate {candidates[0].__name__}: {e}",
                code=ValidationCode.NOT_INSTANTIABLE.value,
                cause=e,
            ) from e

        logger.debug("loader.loaded", script=script.name, loader=self.name, cls=candidates[0].__name__)
        return instance


# =============================================================================
# SQL
# =============================================================================


def _preview(sql: str) -> str:
    return sql if len(sql) <= _SQL_PREVIEW else sql[:_SQL_PREVIEW] + "..."


class SqlScript:
    """Runs ``.up.sql`` text through ``db.execute_sql``."""

    manages_own_transaction = True

    def __init__(self, name: str, up_sql: str):
        self.name = name
        self.up_sql = up_sql

    async def _run(self, db: Any, sql: str, handler: Any, action: str) -> str:
        if not sql:
            raise ExecutionError(f"{self.name}: empty {action}() SQL content")
        if not supports_sql(db):
            handler_name = handler.get_name() if handler is not None else "unknown"
            raise ExecutionError(
                f"{self.name}: SQL migrations need a database handle with execute_sql() "
                f"(handler: {handler_name})"
            )
        try:
            await db.execute_sql(sql)
        except Exception as e:
            raise ExecutionError(
                f"{self.name}: SQL {action} failed: {e}\nSQL preview:\n{_preview(sql)}",
                cause=e,
            ) from e
        lines = len(sql.splitlines())
        return f"Executed SQL {action} ({lines} lines)"

    async def up(self, db: Any, info: MigrationInfo, handler: Any) -> str:
        return await self._run(db, self.up_sql, handler, "up")


class ReversibleSqlScript(SqlScript):
    """``SqlScript`` with a sibling ``.down.sql``."""

    def __init__(self, name: str, up_sql: str, down_sql: str):
        super().__init__(name, up_sql)
        self.down_sql = down_sql

    async def down(self, db: Any, info: MigrationInfo, handler: Any) -> str:
        return await self._run(db, self.down_sql, handler, "down")


class SqlScriptLoader(ScriptLoader):
    name = "sql"

    def can_handle(self, filepath: str) -> bool:
        lowered = filepath.lower()
        return lowered.endswith(".sql") and not _DOWN_SQL.search(lowered)

    @staticmethod
    def down_path(filepath: str) -> Path:
        if _UP_SQL.search(filepath):
            return Path(_UP_SQL.sub(".down.sql", filepath))
        return Path(re.sub(r"\.sql$", ".down.sql", filepath, flags=re.IGNORECASE))

    async def load(self, script: MigrationScript) -> RunnableScript:
        path = Path(script.filepath)
        if not path.exists():
            raise ScriptLoadError(
                f"{script.name}: SQL file not found: {script.filepath}",
                code=ValidationCode.FILE_NOT_FOUND.value,
            )

        up_sql = path.read_text(encoding="utf-8").strip()
        down = self.down_path(script.filepath)
        if down.exists():
            logger.debug("loader.down_sql_found", script=script.name, path=str(down))
            return ReversibleSqlScript(script.name, up_sql, down.read_text(encoding="utf-8").strip())
        return SqlScript(script.name, up_sql)


# =============================================================================
# REGISTRY
# =============================================================================


class LoaderRegistry:
    """Dispatches a script to the first loader that can handle its file."""

    def __init__(self, loaders: list[ScriptLoader] | None = None):
        self._loaders: list[ScriptLoader] = list(loaders or [])

    @classmethod
    def default(cls) -> LoaderRegistry:
        return cls([SqlScriptLoader(), PythonScriptLoader()])

    def register(self, loader: ScriptLoader) -> None:
        self._loaders.append(loader)

    @property
    def loaders(self) -> list[ScriptLoader]:
        return list(self._loaders)

    def can_handle(self, filepath: str) -> bool:
        return any(loader.can_handle(filepath) for loader in self._loaders)

    def find_loader(self, filepath: str) -> ScriptLoader | None:
        for loader in self._loaders:
            if loader.can_handle(filepath):
                return loader
        return None

    async def load(self, script: MigrationScript) -> RunnableScript:
        loader = self.find_loader(script.filepath)
        if loader is None:
            raise ScriptLoadError(
                f"{script.name}: no loader registered for {Path(script.filepath).suffix or 'this file'}",
                code=ValidationCode.IMPORT_FAILED.value,
            )
        return await loader.load(script)
