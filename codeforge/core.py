# codeforge/core.py
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .apply_engine import ApplyEngine
from .config import load_config, load_env_variables, resolve_project_root, save_default_config
from .errors import RequestValidationFailed
from .events import ProgressEvent
from .file_blocks import extract
from .logging_utils import configure_logging
from .packages import infer_packages

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("codeforge", add_help=True)

    # Config
    p.add_argument("--config", default="", help="Path to .codeforge/config.json (optional)")
    p.add_argument("--init-config", action="store_true", help="Write default .codeforge/config.json and exit")
    p.add_argument("--project-root", default="", help="Project root (defaults to CODEFORGE_PROJECT_ROOT or CWD)")

    # Logging
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    p.add_argument("--plain-logs", action="store_true", help="Human-readable logs instead of JSON lines")

    # Modes (the codeforge_cli shim maps subcommands onto CODEFORGE_MODE)
    p.add_argument("--serve", action="store_true", help="Run the HTTP server")
    p.add_argument("--host", default=None, help="Bind host (serve)")
    p.add_argument("--port", type=int, default=None, help="Bind port (serve)")
    p.add_argument("--apply", dest="apply_path", default="", help="Apply a JSON request or generated text file ('-' for stdin)")
    p.add_argument("--extract", dest="extract_path", default="", help="Print file blocks found in generated text ('-' for stdin)")
    p.add_argument("target", nargs="?", default="", help="Input file for apply/extract subcommands")
    return p


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _request_body(raw: str) -> Dict[str, Any]:
    """JSON apply requests pass through; anything else is treated as generated text."""
    try:
        data = json.loads(raw)
    except ValueError:
        return {"generatedCode": raw}
    if isinstance(data, dict):
        return data
    return {"generatedCode": raw}


def _run_extract(path: str, cfg: Dict[str, Any]) -> int:
    result = extract(_read_input(path))
    exclude = (cfg.get("packages") or {}).get("generate_exclude") or ()
    out = {
        "explanation": result.explanation,
        "files": [f.to_dict() for f in result.files],
        "packages": infer_packages(result.files, exclude),
    }
    print(json.dumps(out, indent=2, ensure_ascii=False))
    return 0


def _run_apply(path: str, project_root: Path, cfg: Dict[str, Any]) -> int:
    engine = ApplyEngine.from_config(project_root, cfg)
    try:
        request = engine.validate_request(_request_body(_read_input(path)))
    except RequestValidationFailed as e:
        print(json.dumps({"type": "error", "error": str(e)}))
        return 2

    async def _emit(event: ProgressEvent) -> None:
        print(json.dumps(event.to_dict(), ensure_ascii=False), flush=True)

    result = asyncio.run(engine.apply(request.files, _emit, request.packages))
    return 1 if result.errors else 0


def _run_serve(args_ns, cfg: Dict[str, Any]) -> int:
    from .server import run as run_server  # local import keeps apply/extract free of uvicorn

    return run_server(args_ns, cfg)


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    args_ns = _build_parser().parse_args(argv)

    configure_logging(verbose=args_ns.verbose, structured=not args_ns.plain_logs)

    # Load .env (non-destructive)
    load_env_variables()

    project_root = resolve_project_root(args_ns.project_root or None)
    args_ns.project_root = str(project_root)

    cfg, cfg_path = load_config(project_root, args_ns.config or None)
    if args_ns.init_config:
        save_default_config(cfg_path)
        log.info("Wrote default config to %s", cfg_path)
        return 0

    mode = os.getenv("CODEFORGE_MODE", "").strip().lower()
    if mode == "extract" or args_ns.extract_path:
        return _run_extract(args_ns.extract_path or args_ns.target or "-", cfg)
    if mode == "apply" or args_ns.apply_path:
        return _run_apply(args_ns.apply_path or args_ns.target or "-", project_root, cfg)
    if mode == "serve" or args_ns.serve:
        return _run_serve(args_ns, cfg)

    _build_parser().print_help()
    return 1
