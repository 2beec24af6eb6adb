# codeforge/orchestrator.py
"""
Generation request driver.

Per request:  IDLE -> PROVIDER_SELECTED -> [EDIT_CONTEXT_BUILT] -> STREAMING
              -> FINALIZING -> DONE | FAILED

Every stage reports through the request's EventChannel. Any exception ends the
run with exactly one `error` event; edit-context problems are downgraded to a
`warning` and the run carries on without the extra context. The channel is
closed in `finally`, on every path.
"""
from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from . import events as ev
from .context import (
    DEFAULT_SYSTEM_PROMPT,
    ContextSearch,
    KeywordContextSearch,
    SearchResult,
    build_edit_system_prompt,
    get_file_contents,
)
from .errors import ContextBuildFailed
from .events import EventChannel
from .file_blocks import StreamingFileExtractor
from .models import GenerateRequest
from .packages import infer_packages
from .providers import ProviderRegistry, ToolSpec
from .session_store import ConversationEdit, MajorChange, SessionContext

log = logging.getLogger(__name__)

CONTEXT_WARNING = "Could not analyze codebase - proceeding with direct edit"
MAJOR_CHANGE_FILE_COUNT = 3


class GenerationStage(str, Enum):
    IDLE = "idle"
    PROVIDER_SELECTED = "provider_selected"
    EDIT_CONTEXT_BUILT = "edit_context_built"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class EditContext:
    primary_files: List[str]
    confidence: float
    results: List[SearchResult]
    system_prompt: str
    edit_type: str = "MODIFY"


@dataclass
class GenerationRun:
    """Bookkeeping for one request; kept for logs and tests."""

    stage: GenerationStage = GenerationStage.IDLE
    provider: Optional[str] = None
    model: Optional[str] = None
    generated: str = ""
    files: List[str] = field(default_factory=list)
    packages: List[str] = field(default_factory=list)
    error: Optional[str] = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class GenerationOrchestrator:
    def __init__(
        self,
        registry: ProviderRegistry,
        session: SessionContext,
        cfg: Dict[str, Any],
        *,
        context_search: Optional[ContextSearch] = None,
        search_tool: Optional[ToolSpec] = None,
    ) -> None:
        llm = cfg.get("llm") or {}
        search_cfg = cfg.get("search") or {}
        self.registry = registry
        self.session = session
        self.context_search = context_search or KeywordContextSearch(int(search_cfg.get("max_context_files", 10)))
        self.search_tool = search_tool
        self.search_enabled = bool(search_cfg.get("enabled", True))
        self.temperature = llm.get("temperature", 0.7)
        self.history_messages = int(llm.get("history_messages", 5))
        self.package_exclude = tuple((cfg.get("packages") or {}).get("generate_exclude") or ())

    async def run(self, request: GenerateRequest, channel: EventChannel) -> GenerationRun:
        run = GenerationRun()
        prompt = request.prompt or ""
        t0 = time.time()
        try:
            selection = self.registry.select(request.provider, request.model)
            run.stage = GenerationStage.PROVIDER_SELECTED
            run.provider, run.model = selection.provider_name, selection.model_id
            log.info("generation started", extra={"provider": run.provider, "model": run.model, "chars": len(prompt)})

            ctx = request.context
            user_msg = await self.session.add_message(
                "user",
                prompt,
                {
                    "sandboxId": ctx.sandbox_id if ctx else None,
                    "model": selection.model_id,
                    "provider": selection.provider_name,
                },
            )
            if ctx and ctx.current_files:
                await self.session.set_manifest(ctx.current_files)

            await channel.send(ev.status("Initializing AI..."))

            edit_ctx: Optional[EditContext] = None
            if request.is_edit:
                edit_ctx = await self._edit_context(prompt, channel)
                if edit_ctx is not None:
                    run.stage = GenerationStage.EDIT_CONTEXT_BUILT

            system_prompt = edit_ctx.system_prompt if edit_ctx else DEFAULT_SYSTEM_PROMPT
            history = await self.session.recent_history(self.history_messages, exclude_id=user_msg.id)
            messages = history + [{"role": "user", "content": prompt}]

            tools = None
            if request.enable_search and self.search_enabled and self.search_tool is not None:
                tools = [self.search_tool]

            await channel.send(ev.status("Generating code..."))
            run.stage = GenerationStage.STREAMING

            extractor = StreamingFileExtractor()
            order: Dict[str, int] = {}
            async for fragment in selection.provider.stream(
                system_prompt,
                messages,
                selection.model_id,
                tools=tools,
                temperature=self.temperature,
                max_tokens=selection.max_tokens,
            ):
                if not fragment:
                    continue
                await channel.send(ev.stream_chunk(fragment))
                for block in extractor.feed(fragment):
                    idx = order.setdefault(block.path, len(order) + 1)
                    await channel.send(
                        ev.ProgressEvent(type="file-progress", file_name=block.path, action="generated", current=idx)
                    )

            run.stage = GenerationStage.FINALIZING
            generated = extractor.buffer
            extracted = extractor.result()
            packages = infer_packages(extracted.files, self.package_exclude)
            run.generated = generated
            run.files = [f.path for f in extracted.files]
            run.packages = packages

            await channel.send(
                ev.complete(
                    generatedCode=generated,
                    explanation=extracted.explanation or "Code generated successfully",
                    files=len(extracted.files),
                    model=selection.model_id,
                    provider=selection.provider_name,
                    packagesToInstall=packages or None,
                )
            )

            if edit_ctx is not None:
                major = None
                if len(extracted.files) > MAJOR_CHANGE_FILE_COUNT:
                    major = MajorChange(description=prompt, files_affected=list(edit_ctx.primary_files))
                await self.session.record_edit(
                    ConversationEdit(
                        user_request=prompt,
                        target_files=list(edit_ctx.primary_files),
                        edit_type=edit_ctx.edit_type,
                        confidence=edit_ctx.confidence,
                    ),
                    major,
                )

            await self.session.add_message(
                "assistant",
                generated,
                {"model": selection.model_id, "provider": selection.provider_name, "files": run.files},
            )
            run.stage = GenerationStage.DONE
            log.info(
                "generation complete",
                extra={
                    "provider": run.provider,
                    "model": run.model,
                    "files": len(run.files),
                    "chars": len(generated),
                    "latency_ms": int((time.time() - t0) * 1000),
                },
            )
        except Exception as e:
            run.stage = GenerationStage.FAILED
            run.error = str(e) or "Unknown error occurred"
            log.exception("generation failed", extra={"provider": run.provider, "model": run.model})
            await channel.send(ev.error(run.error))
        finally:
            channel.close()
        return run

    async def _edit_context(self, prompt: str, channel: EventChannel) -> Optional[EditContext]:
        manifest = dict(self.session.manifest)
        if not manifest:
            log.info("edit requested without a file manifest; using direct edit")
            return None

        await channel.send(ev.status("Analyzing codebase..."))
        try:
            results = await self._search(prompt, manifest)
            if not results:
                return None
            await channel.send(ev.status(f"Found {len(results)} relevant files"))
            target = await self._select(results, prompt)
            return self._assemble(prompt, manifest, results, target)
        except ContextBuildFailed as e:
            log.warning("edit context failed: %s", e, exc_info=True)
            await channel.send(ev.warning(CONTEXT_WARNING))
            return None

    async def _search(self, prompt: str, manifest: Dict[str, str]) -> List[SearchResult]:
        try:
            found = await _maybe_await(self.context_search.search(prompt, manifest))
            return [_as_result(r) for r in (found or [])]
        except Exception as e:
            raise ContextBuildFailed(f"context search failed: {e}") from e

    async def _select(self, results: List[SearchResult], prompt: str) -> SearchResult:
        try:
            target = await _maybe_await(self.context_search.select_target_file(results, prompt))
            if target is None:
                raise ContextBuildFailed("no target file selected")
            return _as_result(target)
        except ContextBuildFailed:
            raise
        except Exception as e:
            raise ContextBuildFailed(f"target selection failed: {e}") from e

    def _assemble(
        self, prompt: str, manifest: Dict[str, str], results: List[SearchResult], target: SearchResult
    ) -> EditContext:
        try:
            primary = [target.path]
            contents = get_file_contents(primary, manifest)
            return EditContext(
                primary_files=primary,
                confidence=float(target.score),
                results=results,
                system_prompt=build_edit_system_prompt(prompt, results, contents),
            )
        except Exception as e:
            raise ContextBuildFailed(f"edit prompt assembly failed: {e}") from e


def _as_result(item: Any) -> SearchResult:
    """Accept SearchResult, a `{path, score, reason}` mapping or any object with those attributes."""
    if isinstance(item, SearchResult):
        return item
    if isinstance(item, Mapping):
        path, score, reason = item.get("path"), item.get("score", 0.0), item.get("reason", "")
    else:
        path, score, reason = getattr(item, "path", None), getattr(item, "score", 0.0), getattr(item, "reason", "")
    if not isinstance(path, str) or not path:
        raise ContextBuildFailed(f"search result without a path: {item!r}")
    return SearchResult(path=path, score=float(score or 0.0), reason=str(reason or ""))


__all__ = ["GenerationOrchestrator", "GenerationStage", "GenerationRun", "EditContext", "CONTEXT_WARNING"]
