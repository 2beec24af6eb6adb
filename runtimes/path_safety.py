# runtimes/path_safety.py
"""runtimes.path_safety

Helpers to decide whether a generated file path may be written under a
project_root, and to resolve it safely at write time.

Key APIs:
- PathPolicy.normalize(raw) -> str:
  Canonicalizes a model-supplied path: strips leading slashes and, unless the
  path already lives under a recognized top-level project directory or names a
  recognized root config file, prefixes the default source directory.

- PathPolicy.classify(path) -> PathVerdict:
  Pure string/path validation (no filesystem access). Checks run in a fixed
  order and the first failing check decides the reason:
    1. parent-directory segment      -> Violation.PATH_TRAVERSAL
    2. absolute path                 -> Violation.ABSOLUTE_PATH
    3. escapes project_root          -> Violation.ESCAPES_ROOT
    4. protected file name           -> Violation.PROTECTED_FILE
    5. protected directory segment   -> Violation.PROTECTED_DIRECTORY
    6. extension not in allow-list   -> Violation.EXTENSION_NOT_ALLOWED
  A path without an extension passes check 6.

- resolve_within_root(project_root, rel_path) -> pathlib.Path:
  Strict write-time resolver. It rejects absolute paths and ".." parts,
  resolves under project_root (following symlinks) and guarantees the result is
  contained within project_root. A path can be classified safe and still fail
  here (for example through a symlinked directory); callers treat that as an
  I/O failure for the one file.
"""

from __future__ import annotations

import fnmatch
import os
import posixpath
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PureWindowsPath
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

_SEP = re.compile(r"[\\/]+")
_DRIVE = re.compile(r"^[A-Za-z]:")


class Violation(str, Enum):
    PATH_TRAVERSAL = "path_traversal"
    ABSOLUTE_PATH = "absolute_path"
    ESCAPES_ROOT = "escapes_root"
    PROTECTED_FILE = "protected_file"
    PROTECTED_DIRECTORY = "protected_directory"
    EXTENSION_NOT_ALLOWED = "extension_not_allowed"


@dataclass(frozen=True)
class PathVerdict:
    safe: bool
    path: str
    reason: Optional[str] = None
    violation: Optional[Violation] = None

    @classmethod
    def ok(cls, path: str) -> "PathVerdict":
        return cls(safe=True, path=path)

    @classmethod
    def reject(cls, path: str, violation: Violation, reason: str) -> "PathVerdict":
        return cls(safe=False, path=path, reason=reason, violation=violation)


def split_segments(path: str) -> List[str]:
    """Split on both separator styles, dropping empty and '.' segments."""
    return [s for s in _SEP.split(path) if s and s != "."]


def has_parent_segment(path: str) -> bool:
    return any(s == ".." for s in _SEP.split(path))


def is_absolute_path(path: str) -> bool:
    if path.startswith(("/", "\\")):
        return True
    if _DRIVE.match(path):
        return True
    return PureWindowsPath(path).is_absolute()


class PathPolicy:
    """Write policy for generated files under a single project root."""

    def __init__(
        self,
        project_root: Union[str, Path],
        *,
        protected_files: Iterable[str] = (),
        protected_dirs: Iterable[str] = (),
        allowed_extensions: Iterable[str] = (),
        default_source_dir: str = "src",
        top_level_dirs: Iterable[str] = (),
        root_files: Iterable[str] = (),
    ) -> None:
        self.project_root = Path(project_root).resolve()
        self.protected_files: Tuple[str, ...] = tuple(protected_files)
        self.protected_dirs = frozenset(protected_dirs)
        self.allowed_extensions: Tuple[str, ...] = tuple(e.lower() for e in allowed_extensions)
        self.default_source_dir = default_source_dir.strip("/\\")
        self.top_level_dirs: Tuple[str, ...] = tuple(d.strip("/\\") for d in top_level_dirs if d.strip("/\\"))
        self.root_files = frozenset(root_files)

    @classmethod
    def from_config(cls, project_root: Union[str, Path], paths_cfg: Dict[str, Any]) -> "PathPolicy":
        return cls(
            project_root,
            protected_files=paths_cfg.get("protected_files") or (),
            protected_dirs=paths_cfg.get("protected_dirs") or (),
            allowed_extensions=paths_cfg.get("allowed_extensions") or (),
            default_source_dir=str(paths_cfg.get("default_source_dir") or ""),
            top_level_dirs=paths_cfg.get("top_level_dirs") or (),
            root_files=paths_cfg.get("root_files") or (),
        )

    # ---------- normalization ----------

    def normalize(self, raw: str) -> str:
        normalized = re.sub(r"^(?:\./|/)+", "", raw)
        if not self.default_source_dir:
            return normalized

        file_name = posixpath.basename(normalized)
        under_known_dir = any(normalized.startswith(d + "/") for d in self.top_level_dirs)
        if under_known_dir or file_name in self.root_files:
            return normalized
        return f"{self.default_source_dir}/{normalized}"

    # ---------- classification ----------

    def classify(self, path: str) -> PathVerdict:
        if has_parent_segment(path):
            return PathVerdict.reject(path, Violation.PATH_TRAVERSAL, "Path traversal detected")

        if is_absolute_path(path):
            return PathVerdict.reject(path, Violation.ABSOLUTE_PATH, "Absolute paths not allowed")

        if not self._stays_under_root(path):
            return PathVerdict.reject(path, Violation.ESCAPES_ROOT, "Path escapes project root")

        segments = split_segments(path)
        file_name = segments[-1] if segments else ""
        if file_name and any(fnmatch.fnmatchcase(file_name, pat) for pat in self.protected_files):
            return PathVerdict.reject(path, Violation.PROTECTED_FILE, f"Protected file: {file_name}")

        for segment in segments:
            if segment in self.protected_dirs:
                return PathVerdict.reject(
                    path, Violation.PROTECTED_DIRECTORY, f"Protected directory: {segment}"
                )

        ext = os.path.splitext(file_name)[1]
        if ext:
            lowered = path.lower()
            if not any(lowered.endswith(allowed) for allowed in self.allowed_extensions):
                return PathVerdict.reject(
                    path, Violation.EXTENSION_NOT_ALLOWED, f"File extension not allowed: {ext}"
                )

        return PathVerdict.ok(path)

    def _stays_under_root(self, path: str) -> bool:
        root = os.path.normpath(str(self.project_root))
        rel = "/".join(split_segments(path))
        candidate = os.path.normpath(os.path.join(root, rel))
        try:
            return os.path.commonpath([root, candidate]) == root
        except ValueError:
            return False


def resolve_within_root(project_root: Union[str, Path], rel_path: str) -> Path:
    """Resolve a repo-relative path within project_root.

    This is the strict API for write entrypoints: it rejects absolute paths and
    any path containing '..' traversal parts, resolves under project_root
    (following symlinks), and guarantees the returned Path is absolute and
    contained within project_root.

    Raises ValueError with deterministic messages on rejection.
    """
    root = Path(project_root).resolve()
    p = Path(rel_path)

    if p.is_absolute() or is_absolute_path(rel_path):
        raise ValueError(f"Absolute paths are not allowed: {rel_path}")
    if any(part == ".." for part in p.parts) or has_parent_segment(rel_path):
        raise ValueError(f"Path traversal '..' is not allowed: {rel_path}")

    candidate = root / p
    try:
        resolved = candidate.resolve()
    except OSError:
        resolved = candidate.absolute()

    try:
        resolved.relative_to(root)
    except ValueError:
        raise ValueError(
            f"Refusing path outside project root: attempted='{resolved}' project_root='{root}'"
        )

    return resolved


__all__ = [
    "Violation",
    "PathVerdict",
    "PathPolicy",
    "split_segments",
    "has_parent_segment",
    "is_absolute_path",
    "resolve_within_root",
]
