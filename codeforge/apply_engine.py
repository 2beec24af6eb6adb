# codeforge/apply_engine.py
"""
Materialise file records on disk under a project root, reporting progress.

Flow for one request:
  validate_request(body)    whole-batch schema gate, nothing touched on failure
  apply(files, emit)        status -> per file [validating -> creating|updating ->
                            file-complete | file-error] -> complete

Files are processed strictly in input order. A file that fails the path policy
or hits an OS error yields a failed FileOutcome and the batch moves on; only
request-level problems raise (RequestValidationFailed).

Blocking filesystem calls run through asyncio.to_thread so the event loop keeps
draining the caller's SSE channel while files are written.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from runtimes.path_safety import PathPolicy, resolve_within_root

from . import events as ev
from .errors import RequestValidationFailed
from .file_blocks import FileBlock, extract
from .io_utils import ensure_parent_dir, read_text_if_exists, write_text_atomic
from .models import ApplyCodeRequest, ApplyResult, FileOutcome, FileRecord
from .packages import infer_packages

log = logging.getLogger(__name__)

Emit = Callable[[ev.ProgressEvent], Awaitable[Any]]
RecordLike = Union[FileRecord, FileBlock, Mapping[str, Any]]


def _fields(record: RecordLike) -> tuple[str, str]:
    if isinstance(record, Mapping):
        return str(record.get("path") or ""), str(record.get("content") or "")
    return record.path, record.content


def _error_messages(exc: ValidationError) -> List[str]:
    out: List[str] = []
    for err in exc.errors():
        ctx_err = (err.get("ctx") or {}).get("error")
        if ctx_err is not None:
            out.append(str(ctx_err))
            continue
        loc = ".".join(str(p) for p in err.get("loc") or ())
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out


class ApplyEngine:
    def __init__(
        self,
        policy: PathPolicy,
        *,
        max_files: int = 100,
        max_path_length: int = 500,
        skip_unchanged: bool = False,
        package_exclude: Iterable[str] = ("react", "react-dom", "next"),
    ) -> None:
        self.policy = policy
        self.max_files = int(max_files)
        self.max_path_length = int(max_path_length)
        self.skip_unchanged = bool(skip_unchanged)
        self.package_exclude = tuple(package_exclude)

    @classmethod
    def from_config(cls, project_root: Union[str, Path], cfg: Dict[str, Any]) -> "ApplyEngine":
        apply_cfg = cfg.get("apply") or {}
        return cls(
            PathPolicy.from_config(project_root, cfg.get("paths") or {}),
            max_files=apply_cfg.get("max_files", 100),
            max_path_length=apply_cfg.get("max_path_length", 500),
            skip_unchanged=apply_cfg.get("skip_unchanged", False),
            package_exclude=(cfg.get("packages") or {}).get("apply_exclude") or (),
        )

    @property
    def project_root(self) -> Path:
        return self.policy.project_root

    # ---------- request gate ----------

    def validate_request(self, body: Any) -> ApplyCodeRequest:
        """Parse generated text when needed, then validate the whole batch."""
        if not isinstance(body, dict):
            raise RequestValidationFailed("Request validation failed", ["body must be a JSON object"])

        body = dict(body)
        if body.get("generatedCode") and body.get("files") is None:
            body["files"] = [b.to_dict() for b in extract(body["generatedCode"]).files]

        try:
            return ApplyCodeRequest.model_validate(
                body,
                context={"max_files": self.max_files, "max_path_length": self.max_path_length},
            )
        except ValidationError as e:
            details = _error_messages(e)
            raise RequestValidationFailed("Validation failed: " + ", ".join(details), details) from e

    # ---------- batch ----------

    async def apply(
        self,
        files: Sequence[RecordLike],
        emit: Emit,
        packages: Optional[List[str]] = None,
    ) -> ApplyResult:
        total = len(files)
        if total < 1:
            raise RequestValidationFailed("Validation failed: At least one file is required")
        if total > self.max_files:
            raise RequestValidationFailed("Validation failed: Too many files in single request")

        t0 = time.time()
        await emit(ev.status(f"Processing {total} files..."))

        result = ApplyResult(
            packages=list(packages) if packages is not None else infer_packages(files_as_blocks(files), self.package_exclude)
        )

        for index, record in enumerate(files, start=1):
            raw_path, content = _fields(record)
            outcome = await self._apply_one(raw_path, content, index, total, emit)
            result.record(outcome)
            if outcome.ok:
                await emit(ev.file_complete(outcome.path, outcome.action or "created"))
            else:
                await emit(ev.file_error(outcome.path, outcome.error or "Path validation failed"))

        await emit(ev.complete(message=result.summary(), results=result.to_dict()))
        log.info(
            "apply finished",
            extra={
                "files": total,
                "errors": len(result.errors),
                "latency_ms": int((time.time() - t0) * 1000),
            },
        )
        return result

    async def _apply_one(self, raw_path: str, content: str, index: int, total: int, emit: Emit) -> FileOutcome:
        path = self.policy.normalize(raw_path)
        await emit(ev.file_progress(path, "validating", index, total))

        verdict = self.policy.classify(path)
        if not verdict.safe:
            log.info("path rejected: %s", verdict.reason, extra={"path": path, "action": "rejected"})
            return FileOutcome.failed(path, verdict.reason or "Path validation failed")

        try:
            target = resolve_within_root(self.project_root, path)
            existing = await asyncio.to_thread(read_text_if_exists, target) if self.skip_unchanged else None
            exists = existing is not None or await asyncio.to_thread(target.exists)

            await emit(ev.file_progress(path, "updating" if exists else "creating", index, total))

            if self.skip_unchanged and existing == content:
                log.debug("unchanged, skipping write", extra={"path": path, "action": "skipped"})
                return FileOutcome.written(path, "skipped")

            await asyncio.to_thread(ensure_parent_dir, target)
            await asyncio.to_thread(write_text_atomic, target, content)
        except Exception as e:
            log.warning("write failed: %s", e, extra={"path": path, "action": "error"})
            return FileOutcome.failed(path, str(e) or e.__class__.__name__)

        action = "updated" if exists else "created"
        log.debug("file written", extra={"path": path, "action": action, "chars": len(content)})
        return FileOutcome.written(path, action)


def files_as_blocks(files: Iterable[RecordLike]) -> List[FileBlock]:
    out: List[FileBlock] = []
    for f in files:
        path, content = _fields(f)
        out.append(FileBlock(path, content))
    return out


__all__ = ["ApplyEngine", "Emit", "files_as_blocks"]
