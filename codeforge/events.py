# codeforge/events.py
"""
codeforge.events: progress event contract and the per-request SSE channel

Every frame pushed to a caller is one JSON object on a single `data:` line:

  data: {"type": "file-progress", "fileName": "src/a.ts", "action": "validating", "current": 1, "total": 3}

Event types:
  status         {message}
  file-progress  {fileName, action: validating|creating|updating|generated, current, total}
  file-complete  {fileName, action: created|updated|skipped}
  file-error     {fileName, error}
  complete       apply:    {message, results}
                 generate: {generatedCode, explanation, files, model, provider, packagesToInstall?}
  error          {error}
  stream         {content}            (generation only; followed by a keepalive comment)
  warning        {message}            (generation only; degraded feature)

Keys are camelCase on the wire; fields left as None are omitted.

A request owns exactly one EventChannel. The producer task pushes events with
`send`, the HTTP response drains `frames()`, and `close()` ends the stream. Close
is idempotent so it can sit in a `finally` on every exit path. Once the consumer
is gone (client disconnected) further sends are dropped.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, Optional

log = logging.getLogger(__name__)

KEEPALIVE = ": keepalive\n\n"

_WIRE_NAMES = {
    "file_name": "fileName",
}


@dataclass
class ProgressEvent:
    type: str
    message: Optional[str] = None
    file_name: Optional[str] = None
    action: Optional[str] = None
    current: Optional[int] = None
    total: Optional[int] = None
    error: Optional[str] = None
    results: Optional[Dict[str, Any]] = None
    content: Optional[str] = None
    # Type-specific payload merged at the top level (e.g. generation `complete`).
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        for name in ("message", "file_name", "action", "current", "total", "error", "results", "content"):
            val = getattr(self, name)
            if val is not None:
                out[_WIRE_NAMES.get(name, name)] = val
        for k, v in self.extra.items():
            if v is not None:
                out[k] = v
        return out


# ---------- constructors ----------


def status(message: str) -> ProgressEvent:
    return ProgressEvent(type="status", message=message)


def warning(message: str) -> ProgressEvent:
    return ProgressEvent(type="warning", message=message)


def file_progress(file_name: str, action: str, current: int, total: int) -> ProgressEvent:
    return ProgressEvent(type="file-progress", file_name=file_name, action=action, current=current, total=total)


def file_complete(file_name: str, action: str) -> ProgressEvent:
    return ProgressEvent(type="file-complete", file_name=file_name, action=action)


def file_error(file_name: str, error: str) -> ProgressEvent:
    return ProgressEvent(type="file-error", file_name=file_name, error=error)


def stream_chunk(content: str) -> ProgressEvent:
    return ProgressEvent(type="stream", content=content)


def error(message: str) -> ProgressEvent:
    return ProgressEvent(type="error", error=message)


def complete(message: Optional[str] = None, results: Optional[Dict[str, Any]] = None, **extra: Any) -> ProgressEvent:
    return ProgressEvent(type="complete", message=message, results=results, extra=dict(extra))


# ---------- SSE packing ----------


def sse_pack(event: Dict[str, Any]) -> str:
    data = json.dumps(event, ensure_ascii=False)
    return f"data: {data}\n\n"


_CLOSE = object()


class EventChannel:
    """Strictly ordered single-producer queue of SSE frames for one request."""

    def __init__(self, keepalive_after: Iterable[str] = ("stream",)) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._keepalive_after = frozenset(keepalive_after)
        self._closed = False
        self._consumer_gone = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: ProgressEvent) -> bool:
        """Queue one event; returns False when it was dropped."""
        if self._closed or self._consumer_gone:
            log.debug("dropping event on closed channel", extra={"event_type": event.type})
            return False
        self._queue.put_nowait(sse_pack(event.to_dict()))
        if event.type in self._keepalive_after:
            self._queue.put_nowait(KEEPALIVE)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSE)

    async def frames(self) -> AsyncIterator[str]:
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSE:
                    break
                yield item
        finally:
            # Reached on normal close as well as on client disconnect.
            self._consumer_gone = True


__all__ = [
    "KEEPALIVE",
    "ProgressEvent",
    "EventChannel",
    "sse_pack",
    "status",
    "warning",
    "file_progress",
    "file_complete",
    "file_error",
    "stream_chunk",
    "error",
    "complete",
]
