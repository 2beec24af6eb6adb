"""
Source tree conventions: every module opens with its `# package/file.py` path line.
"""

import importlib
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
MODULES = sorted(p for pkg in ("codeforge", "runtimes") for p in (ROOT / pkg).glob("*.py"))


@pytest.mark.parametrize("path", MODULES, ids=lambda p: f"{p.parent.name}/{p.name}")
def test_module_path_header(path: Path):
    first = path.read_text(encoding="utf-8").splitlines()[0]
    assert first == f"# {path.parent.name}/{path.name}"


@pytest.mark.parametrize("name", ["packages", "models"])
def test_module_docstring(name: str):
    module = importlib.import_module(f"codeforge.{name}")
    assert module.__doc__ and module.__doc__.strip()
