# codeforge_cli.py
from __future__ import annotations

"""
Thin CLI shim for codeforge.

- Adds `serve`, `apply` and `extract` subcommands.
- Routes *all* behavior through `codeforge.main()`.

Core + CLI contract:
- This shim sets CODEFORGE_MODE from the subcommand and strips it from argv;
  `codeforge.main()` also understands --serve / --apply / --extract
  directly, so either entrypoint works.

Examples:
  $ codeforge serve --port 8080
  $ codeforge apply response.txt --project-root ./my-app
  $ cat response.txt | codeforge extract -
"""

import os
import sys
from typing import List, Optional

_SUBCOMMANDS = {"serve", "apply", "extract"}


def _extract_mode(argv: List[str]) -> Optional[str]:
    """
    If argv[1] is a known subcommand, return it (and remove it from argv).
    Otherwise return None and leave argv as-is.
    """
    if len(argv) > 1:
        cmd = argv[1].strip().lower()
        if cmd in _SUBCOMMANDS:
            del argv[1]
            return cmd
    return None


def _delegate_to_core(argv: List[str]) -> int:
    from codeforge import main as core_main

    return core_main(argv[1:])


def main() -> int:
    argv = list(sys.argv)
    mode = _extract_mode(argv)
    if mode:
        os.environ["CODEFORGE_MODE"] = mode
    return _delegate_to_core(argv)


if __name__ == "__main__":
    raise SystemExit(main())
