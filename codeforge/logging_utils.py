# codeforge/logging_utils.py
from __future__ import annotations
import datetime
import json
import logging
import os
import sys


class _HttpNoiseFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        noisy = (
            "HTTP Request:" in msg
            or "HTTP Response:" in msg
            or "httpx" in record.name
            or "httpcore" in record.name
        )
        return not noisy


class JsonFormatter(logging.Formatter):
    """Compact single-line JSON formatter for logs.

    Emits objects with keys: ts (ISO8601 UTC), level, module, msg, meta.
    meta is taken from record.__dict__.get('meta') and enriched with the request-level
    fields callers attach through `extra=` (path, provider, model, event_type, ...).
    """

    _FIELDS = (
        "request_id",
        "conversation_id",
        "provider",
        "model",
        "path",
        "action",
        "event_type",
        "files",
        "errors",
        "chars",
        "latency_ms",
    )

    def _safe(self, v):
        try:
            json.dumps(v)
            return v
        except (TypeError, ValueError):
            return str(v)

    def format(self, record: logging.LogRecord) -> str:
        rec_ts = datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")
        meta = {}
        raw_meta = record.__dict__.get("meta")
        if isinstance(raw_meta, dict):
            meta.update(raw_meta)

        for k in self._FIELDS:
            if k in record.__dict__ and record.__dict__[k] is not None:
                meta[k] = self._safe(record.__dict__[k])

        payload = {
            "ts": rec_ts,
            "level": record.levelname.lower(),
            "module": record.name,
            "msg": record.getMessage(),
            "meta": meta,
        }
        if record.exc_info:
            payload["meta"]["exc"] = self._safe(self.formatException(record.exc_info))

        return json.dumps(payload, separators=(",", ":"))


def configure_quiet_http(quiet_http: bool) -> None:
    """Reduce noisy HTTP-level logs from the httpx/openai namespaces.

    Safe to call multiple times.
    """
    if not quiet_http:
        return
    for name in ("httpx", "httpcore", "openai"):
        lg = logging.getLogger(name)
        lg.setLevel(logging.WARNING)
        lg.propagate = False
    root = logging.getLogger()
    for h in root.handlers:
        if not any(isinstance(f, _HttpNoiseFilter) for f in h.filters):
            h.addFilter(_HttpNoiseFilter())
    os.environ.setdefault("OPENAI_LOG", "error")


def configure_logging(
    quiet_http: bool = True, verbose: bool = False, structured: bool = True
) -> None:
    """Configure global logging for the service.

    `structured` switches stderr between compact JSON lines and a human format.
    Level comes from `verbose` or CODEFORGE_LOGLEVEL. Idempotent: an existing
    stderr handler is reused and only its formatter is updated.
    """
    lg = logging.getLogger()
    level_name = "DEBUG" if verbose else os.getenv("CODEFORGE_LOGLEVEL", "INFO").upper()
    lg.setLevel(getattr(logging, level_name, logging.INFO))

    fmt: logging.Formatter = (
        JsonFormatter() if structured else logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    )

    for h in lg.handlers:
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr:
            h.setFormatter(fmt)
            break
    else:
        sh = logging.StreamHandler(sys.stderr)
        sh.setFormatter(fmt)
        lg.addHandler(sh)

    configure_quiet_http(quiet_http)
