# codeforge/__init__.py
"""
codeforge: streams LLM code generation into a project directory.

`codeforge.main(argv)` is the programmatic entrypoint (same flags as the
`codeforge` console script); `codeforge.server.create_app` builds the HTTP
service.
"""
from __future__ import annotations

from typing import List, Optional

__all__ = ["main", "__version__"]
__version__ = "0.1.0"


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI with `argv` (defaults to sys.argv[1:]) and return its exit code."""
    # core pulls in fastapi/openai; keep `import codeforge` light
    from .core import main as core_main

    return core_main(argv)
