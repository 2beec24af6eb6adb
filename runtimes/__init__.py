# runtimes/__init__.py
"""
runtimes package public surface.

Path policy for generated files (runtimes.path_safety), the canonical command
runner (runtimes.runner) and the local sandbox built on it (runtimes.sandbox).
"""

from __future__ import annotations

from .path_safety import PathPolicy, PathVerdict, Violation, resolve_within_root
from .runner import CommandResult, run_command
from .sandbox import LocalSandbox, SandboxClosed

__all__ = [
    "PathPolicy",
    "PathVerdict",
    "Violation",
    "resolve_within_root",
    "CommandResult",
    "run_command",
    "LocalSandbox",
    "SandboxClosed",
]
