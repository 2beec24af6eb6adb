# codeforge/packages.py
"""
npm dependency inference from generated source files.

Bare import/require specifiers are external packages. Relative, absolute,
`@/` alias and `node:` builtin specifiers are local. A caller-supplied
exclusion list drops framework packages the template already ships; it is
matched against the raw specifier, so excluding `next` does not hide
`next/link`.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Mapping, Union

from .file_blocks import FileBlock

# `import x from 'pkg'`, `import 'pkg'`, `require('pkg')`, `import('pkg')`
_IMPORT_RE = re.compile(r"""(?:import|require)\s*\(?['"]([^'"]+)['"]\)?""")
# Tail of a (possibly multi-line) `import {...} from 'pkg'` / `export ... from 'pkg'`.
_FROM_RE = re.compile(r"""\bfrom\s+['"]([^'"]+)['"]""")

_LOCAL_PREFIXES = (".", "/", "@/", "node:")

FileLike = Union[FileBlock, Mapping[str, str]]


def _content_of(f: FileLike) -> str:
    if isinstance(f, FileBlock):
        return f.content
    if isinstance(f, Mapping):
        return str(f.get("content") or "")
    return str(getattr(f, "content", "") or "")


def package_name(specifier: str) -> str:
    """Scoped names keep `@scope/name`, everything else its first segment."""
    parts = specifier.split("/")
    if specifier.startswith("@"):
        return "/".join(parts[:2])
    return parts[0]


def is_external(specifier: str, exclude: Iterable[str] = ()) -> bool:
    if not specifier or specifier.startswith(_LOCAL_PREFIXES):
        return False
    return specifier not in set(exclude)


def infer_packages(files: Iterable[FileLike], exclude: Iterable[str] = ()) -> List[str]:
    """Deduplicated, first-seen ordered list of external package names."""
    excluded = set(exclude)
    found: List[str] = []
    for f in files:
        content = _content_of(f)
        specs = [(m.start(), m.group(1)) for m in _IMPORT_RE.finditer(content)]
        specs += [(m.start(), m.group(1)) for m in _FROM_RE.finditer(content)]
        for _, specifier in sorted(specs):
            if not is_external(specifier, excluded):
                continue
            name = package_name(specifier)
            if name not in found:
                found.append(name)
    return found


__all__ = ["infer_packages", "package_name", "is_external"]
