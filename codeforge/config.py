# codeforge/config.py
from __future__ import annotations
"""
Configuration loader for codeforge.

Environment variables:

# Providers (at least one key is needed for generation)
- GOOGLE_GENERATIVE_AI_API_KEY=...   # Gemini through Google's OpenAI-compatible endpoint
- GROQ_API_KEY=...                   # Llama/Mixtral through Groq's OpenAI-compatible endpoint

# Service
- CODEFORGE_PROJECT_ROOT=...         # directory generated files are written under (default: CWD)
- CODEFORGE_DEFAULT_MODEL=...        # model key used when a request names none
- CODEFORGE_MAX_FILES=100            # upper bound of files per apply request
- CODEFORGE_SEARCH=1                 # attach the web search tool to generation requests
- CODEFORGE_SANDBOX=0                # allow the /api/*-sandbox and /api/run-command endpoints
- CODEFORGE_CORS_ORIGINS=*           # comma separated
- CODEFORGE_HOST=127.0.0.1
- CODEFORGE_PORT=8080
- CODEFORGE_LOGLEVEL=INFO

Notes:
- API keys are read from the env var named in cfg["providers"][name]["api_key_env"];
  they are never written to config.json.
- `.codeforge/config.json` under the project root is deep-merged over DEFAULT_CONFIG,
  then env overrides are applied, then the result is validated against CONFIG_SCHEMA.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import jsonschema
from dotenv import load_dotenv

log = logging.getLogger(__name__)


def load_env_variables() -> None:
    """Load a local .env if present (non-destructive)."""
    load_dotenv(override=False)


def _env_int(name: str, default: int, min_value: int | None = None) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        ival = int(val)
    except ValueError:
        return default
    if min_value is not None and ival < min_value:
        return default
    return ival


def _env_bool(name: str, default: bool) -> bool:
    """Read an environment variable as a boolean.

    Accepts (case-insensitive): '1','true','yes','on' -> True; '0','false','no','off' -> False.
    Anything else (or unset) returns the provided default.
    """
    val = os.getenv(name)
    if val is None:
        return default
    v = str(val).strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


# ---------- Defaults ----------

DEFAULT_CONFIG: Dict[str, Any] = {
    "llm": {
        "default_model": "gemini-2.0-flash-exp",
        "temperature": 0.7,
        "max_tokens": 8192,
        # Recent conversation messages replayed into each generation prompt.
        "history_messages": 5,
        # Tool-call rounds allowed per generation before the stream is closed.
        "max_tool_rounds": 2,
        "timeout_sec": 300.0,
    },
    "providers": {
        "google": {
            "api_key_env": "GOOGLE_GENERATIVE_AI_API_KEY",
            "base_url": "https://generativelanguage.googleapis.com/v1beta/openai/",
            "default_model": "gemini-2.0-flash-exp",
        },
        "groq": {
            "api_key_env": "GROQ_API_KEY",
            "base_url": "https://api.groq.com/openai/v1",
            "default_model": "llama-3.3-70b-versatile",
        },
    },
    # Model key -> provider + provider model id.
    "models": {
        "gemini-2.0-flash-exp": {"provider": "google", "model": "gemini-2.0-flash-exp", "max_tokens": 8192},
        "gemini-1.5-pro": {"provider": "google", "model": "gemini-1.5-pro-002", "max_tokens": 8192},
        "gemini-1.5-flash": {"provider": "google", "model": "gemini-1.5-flash-002", "max_tokens": 8192},
        "llama-3.3-70b": {"provider": "groq", "model": "llama-3.3-70b-versatile", "max_tokens": 8192},
        "llama-3.1-70b": {"provider": "groq", "model": "llama-3.1-70b-versatile", "max_tokens": 8192},
        "mixtral-8x7b": {"provider": "groq", "model": "mixtral-8x7b-32768", "max_tokens": 8192},
    },
    "apply": {
        "max_files": 100,
        "max_path_length": 500,
        # When true, writes whose content matches the file on disk are reported as skipped.
        "skip_unchanged": False,
    },
    "paths": {
        "default_source_dir": "src",
        "top_level_dirs": ["src", "public", "app", "pages", "components", "lib", "styles", "utils"],
        "root_files": [
            "package.json",
            "tsconfig.json",
            "next.config.js",
            "next.config.mjs",
            "tailwind.config.js",
            "tailwind.config.ts",
            "postcss.config.js",
            "README.md",
        ],
        "protected_files": [
            ".env",
            ".env.local",
            ".env.development",
            ".env.production",
            ".env.test",
            ".git",
            ".gitignore",
            "package-lock.json",
            "yarn.lock",
            "pnpm-lock.yaml",
        ],
        "protected_dirs": [".git", "node_modules", ".next", "dist", "build", ".vercel", ".cache"],
        "allowed_extensions": [
            ".js", ".jsx", ".ts", ".tsx",
            ".json", ".html", ".css", ".scss", ".sass",
            ".md", ".mdx", ".txt",
            ".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp",
            ".env.example", ".gitignore.example",
        ],
    },
    "packages": {
        "apply_exclude": ["react", "react-dom", "next"],
        "generate_exclude": ["fs", "path", "http", "https", "crypto", "os", "util", "events"],
    },
    "conversation": {
        "max_messages": 20,
        "keep_messages": 15,
        "max_edits": 10,
        "keep_edits": 8,
    },
    "search": {
        "enabled": True,
        "endpoint": "https://api.duckduckgo.com/",
        "timeout_sec": 10.0,
        "max_results": 5,
        "max_context_files": 10,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8080,
        "cors_origins": ["*"],
    },
    "sandbox": {
        "enabled": False,
        "command_timeout_sec": 120.0,
    },
}


CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "llm": {
            "type": "object",
            "properties": {
                "default_model": {"type": "string"},
                "temperature": {"type": "number"},
                "max_tokens": {"type": "integer", "minimum": 1},
                "history_messages": {"type": "integer", "minimum": 0},
                "max_tool_rounds": {"type": "integer", "minimum": 0},
                "timeout_sec": {"type": "number"},
            },
            "required": ["default_model", "max_tokens", "history_messages"],
        },
        "providers": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "api_key_env": {"type": "string"},
                    "base_url": {"type": ["string", "null"]},
                    "default_model": {"type": "string"},
                },
                "required": ["api_key_env", "default_model"],
            },
        },
        "models": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "provider": {"type": "string"},
                    "model": {"type": "string"},
                    "max_tokens": {"type": "integer"},
                },
                "required": ["provider", "model"],
            },
        },
        "apply": {
            "type": "object",
            "properties": {
                "max_files": {"type": "integer", "minimum": 1},
                "max_path_length": {"type": "integer", "minimum": 1},
                "skip_unchanged": {"type": "boolean"},
            },
            "required": ["max_files", "max_path_length"],
        },
        "paths": {
            "type": "object",
            "properties": {
                "default_source_dir": {"type": "string"},
                "top_level_dirs": {"type": "array", "items": {"type": "string"}},
                "root_files": {"type": "array", "items": {"type": "string"}},
                "protected_files": {"type": "array", "items": {"type": "string"}},
                "protected_dirs": {"type": "array", "items": {"type": "string"}},
                "allowed_extensions": {"type": "array", "items": {"type": "string"}},
            },
        },
        "packages": {
            "type": "object",
            "properties": {
                "apply_exclude": {"type": "array", "items": {"type": "string"}},
                "generate_exclude": {"type": "array", "items": {"type": "string"}},
            },
        },
        "conversation": {
            "type": "object",
            "properties": {
                "max_messages": {"type": "integer", "minimum": 1},
                "keep_messages": {"type": "integer", "minimum": 1},
                "max_edits": {"type": "integer", "minimum": 1},
                "keep_edits": {"type": "integer", "minimum": 1},
            },
        },
        "search": {"type": "object"},
        "server": {
            "type": "object",
            "properties": {
                "host": {"type": "string"},
                "port": {"type": "integer"},
                "cors_origins": {"type": "array", "items": {"type": "string"}},
            },
        },
        "sandbox": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "command_timeout_sec": {"type": "number", "exclusiveMinimum": 0},
            },
        },
    },
    "additionalProperties": True,
}


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _validate(cfg: Dict[str, Any]) -> None:
    try:
        jsonschema.validate(cfg, CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        log.warning("config schema validation failed: %s", e.message)


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    """Apply CODEFORGE_* environment overrides (env wins over file and defaults)."""
    llm = cfg.setdefault("llm", {})
    default_model = os.getenv("CODEFORGE_DEFAULT_MODEL")
    if default_model and default_model.strip():
        llm["default_model"] = default_model.strip()

    apply_cfg = cfg.setdefault("apply", {})
    apply_cfg["max_files"] = _env_int("CODEFORGE_MAX_FILES", int(apply_cfg.get("max_files", 100)), min_value=1)

    search = cfg.setdefault("search", {})
    search["enabled"] = _env_bool("CODEFORGE_SEARCH", bool(search.get("enabled", True)))

    sandbox = cfg.setdefault("sandbox", {})
    sandbox["enabled"] = _env_bool("CODEFORGE_SANDBOX", bool(sandbox.get("enabled", False)))

    server = cfg.setdefault("server", {})
    raw_origins = os.getenv("CODEFORGE_CORS_ORIGINS", "").strip()
    if raw_origins:
        origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
        if origins:
            server["cors_origins"] = origins
    host = os.getenv("CODEFORGE_HOST")
    if host and host.strip():
        server["host"] = host.strip()
    server["port"] = _env_int("CODEFORGE_PORT", int(server.get("port", 8080)), min_value=1)


def resolve_project_root(explicit: str | os.PathLike | None = None) -> Path:
    """Project root precedence: explicit argument, CODEFORGE_PROJECT_ROOT, CWD."""
    raw = explicit or os.getenv("CODEFORGE_PROJECT_ROOT") or ""
    if str(raw).strip():
        return Path(str(raw)).expanduser().resolve()
    return Path.cwd().resolve()


def load_config(
    project_root: Path | None = None,
    explicit_path: str | None = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Tuple[Dict[str, Any], Path]:
    """
    Load `.codeforge/config.json` if present, deep-merge onto defaults, apply
    `overrides` (used by tests and the CLI), then env overrides.
    Returns (config, path_used).
    """
    root = resolve_project_root(project_root)
    path = Path(explicit_path).resolve() if explicit_path else (root / ".codeforge" / "config.json")

    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                cfg = _deep_merge(cfg, data)
            else:
                log.warning("ignoring %s: top-level value is not an object", path)
        except (OSError, ValueError) as e:
            log.warning("failed to read %s: %s", path, e)

    if overrides:
        cfg = _deep_merge(cfg, overrides)

    _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg, path


def save_default_config(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(DEFAULT_CONFIG, indent=2, ensure_ascii=False)
    path.write_text(text, encoding="utf-8")


# Load .env early when this module is imported
load_env_variables()
