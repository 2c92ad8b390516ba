"""Migration file discovery and loading."""

from .loaders import (
    LoaderRegistry,
    PythonScriptLoader,
    ReversibleSqlScript,
    ScriptLoader,
    SqlScript,
    SqlScriptLoader,
)
from .scanner import FileSystemScanner

__all__ = [
    "FileSystemScanner",
    "LoaderRegistry",
    "PythonScriptLoader",
    "ReversibleSqlScript",
    "ScriptLoader",
    "SqlScript",
    "SqlScriptLoader",
]
