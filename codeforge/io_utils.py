# codeforge/io_utils.py
"""
Filesystem primitives used by the apply engine.

All writes are root-locked: callers resolve targets through
`runtimes.path_safety.resolve_within_root` first. Content is written verbatim
(no newline normalization, no re-encoding beyond UTF-8) and atomically: a temp
file in the target directory followed by `os.replace`.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional, Union


def ensure_parent_dir(target: Union[str, Path]) -> None:
    parent = os.path.dirname(os.fspath(target))
    if parent:
        os.makedirs(parent, exist_ok=True)


def read_text_if_exists(target: Union[str, Path]) -> Optional[str]:
    p = Path(target)
    if not p.is_file():
        return None
    with open(p, "r", encoding="utf-8", errors="replace", newline="") as fh:
        return fh.read()


def write_text_atomic(target: Union[str, Path], text: str, encoding: str = "utf-8") -> int:
    """Atomically replace `target` with `text`; returns bytes written."""
    target_str = os.fspath(target)
    dirpath = os.path.dirname(target_str) or "."
    fd = None
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp.codeforge.", dir=dirpath)
        with os.fdopen(fd, "w", encoding=encoding, newline="") as fh:
            fd = None
            fh.write(text)
        os.replace(tmp_path, target_str)
        tmp_path = None
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)
    return os.path.getsize(target_str)


__all__ = ["ensure_parent_dir", "read_text_if_exists", "write_text_atomic"]
