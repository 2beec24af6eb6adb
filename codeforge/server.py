# codeforge/server.py
from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
import uuid
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from runtimes.sandbox import LocalSandbox, SandboxClosed, format_command_output, split_command

from . import __version__
from . import events as ev
from .apply_engine import ApplyEngine
from .config import load_config, resolve_project_root
from .context import ContextSearch
from .errors import RequestValidationFailed, SandboxUnavailable
from .events import EventChannel
from .models import GenerateRequest, RunCommandRequest, SearchRequest
from .orchestrator import GenerationOrchestrator
from .providers import ProviderRegistry
from .search_tool import WebSearch
from .session_store import SessionContext

log = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

NO_SANDBOX_MESSAGE = "No active sandbox session found. Please refresh or restart the preview."
SANDBOX_DISABLED_MESSAGE = "Sandbox is disabled. Set sandbox.enabled in .codeforge/config.json or CODEFORGE_SANDBOX=1."
SANDBOX_ORIGIN_MESSAGE = "Sandbox requests are not allowed from this origin"
LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")

TAGS_METADATA = [
    {"name": "code", "description": "Streaming generation and apply"},
    {"name": "sandbox", "description": "Local command sandbox"},
    {"name": "search", "description": "Web search"},
]

SandboxFactory = Callable[[Path, Dict[str, Any]], Any]


def _default_sandbox_factory(root: Path, cfg: Dict[str, Any]) -> LocalSandbox:
    timeout = (cfg.get("sandbox") or {}).get("command_timeout_sec", 120.0)
    return LocalSandbox(root, command_timeout=timeout)


def _cors_settings(cfg: Dict[str, Any]) -> Tuple[List[str], bool]:
    """Returns (allow_origins, allow_credentials); '*' disables credentials."""
    origins = [o for o in ((cfg.get("server") or {}).get("cors_origins") or ["*"]) if o]
    if not origins or "*" in origins:
        return ["*"], False
    return origins, True


def _sandbox_origin_allowed(origin: Optional[str], allow_origins: List[str]) -> bool:
    """Browser callers must be a listed origin; under '*' only loopback pages qualify."""
    if not origin:
        return True
    if "*" not in allow_origins:
        return origin in allow_origins
    return (urlsplit(origin).hostname or "") in LOOPBACK_HOSTS


def _event_stream(channel: EventChannel) -> StreamingResponse:
    return StreamingResponse(channel.frames(), media_type="text/event-stream", headers=SSE_HEADERS)


def _single_error_stream(message: str) -> StreamingResponse:
    """Request-level failure before any work: one `error` frame, then end of stream."""

    async def _frames() -> AsyncIterator[str]:
        yield ev.sse_pack(ev.error(message).to_dict())

    return StreamingResponse(_frames(), media_type="text/event-stream", headers=SSE_HEADERS)


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def create_app(
    cfg: Optional[Dict[str, Any]] = None,
    project_root: Optional[Path] = None,
    *,
    registry: Optional[ProviderRegistry] = None,
    context_search: Optional[ContextSearch] = None,
    web_search: Optional[WebSearch] = None,
    sandbox_factory: Optional[SandboxFactory] = None,
) -> FastAPI:
    root = resolve_project_root(project_root)
    if cfg is None:
        cfg, _ = load_config(root)

    session = SessionContext(cfg.get("conversation") or {})
    registry = registry if registry is not None else ProviderRegistry.from_config(cfg)
    web_search = web_search if web_search is not None else WebSearch.from_config(cfg.get("search") or {})
    engine = ApplyEngine.from_config(root, cfg)
    orchestrator = GenerationOrchestrator(
        registry,
        session,
        cfg,
        context_search=context_search,
        search_tool=web_search.as_tool(),
    )
    make_sandbox = sandbox_factory or _default_sandbox_factory
    tasks: Set["asyncio.Task[Any]"] = set()

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        pending = list(tasks)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await session.aclose()
        await registry.aclose()

    app = FastAPI(title="codeforge", version=__version__, openapi_tags=TAGS_METADATA, lifespan=lifespan)
    app.state.cfg = cfg
    app.state.project_root = root
    app.state.session = session
    app.state.registry = registry
    app.state.engine = engine
    app.state.orchestrator = orchestrator
    app.state.tasks = tasks

    allow_origins, allow_credentials = _cors_settings(cfg)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    def _spawn(work: Callable[[], Awaitable[Any]]) -> None:
        task = asyncio.create_task(work())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    # ---------- Streaming endpoints ----------

    @app.post("/api/apply-ai-code-stream", tags=["code"])
    async def apply_code_stream(request: Request):
        body = await _read_json(request)
        if body is None:
            return _single_error_stream("Invalid JSON in request body")

        try:
            parsed = engine.validate_request(body)
        except RequestValidationFailed as e:
            log.info("apply rejected: %s", e, extra={"action": "validation"})
            return _single_error_stream(str(e))

        request_id = uuid.uuid4().hex[:12]
        channel = EventChannel()

        async def work() -> None:
            try:
                result = await engine.apply(parsed.files, channel.send, parsed.packages)
                await session.track_files(result.files_created + result.files_updated)
            except Exception as e:
                log.exception("apply failed", extra={"request_id": request_id})
                await channel.send(ev.error(str(e) or "Internal server error"))
            finally:
                channel.close()

        _spawn(work)
        return _event_stream(channel)

    @app.post("/api/generate-ai-code-stream", tags=["code"])
    async def generate_code_stream(request: Request):
        body = await _read_json(request)
        if not isinstance(body, dict):
            return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON in request body"})

        prompt = body.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            return JSONResponse(status_code=400, content={"success": False, "error": "Valid prompt is required"})

        try:
            parsed = GenerateRequest.model_validate(body)
        except ValidationError as e:
            msg = "; ".join(str(err.get("msg")) for err in e.errors())
            return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid request: {msg}"})

        channel = EventChannel()
        _spawn(lambda: orchestrator.run(parsed, channel))
        return _event_stream(channel)

    # ---------- Search ----------

    @app.post("/api/search", tags=["search"])
    async def api_search(payload: SearchRequest):
        query = (payload.query or "").strip()
        if not query:
            return JSONResponse(status_code=400, content={"error": "Query is required"})
        if not (cfg.get("search") or {}).get("enabled", True):
            return {"results": [], "message": "Web search is currently disabled."}
        found = await web_search.search(query)
        out: Dict[str, Any] = {"results": found.get("results") or []}
        if not found.get("success"):
            out["message"] = found.get("message") or found.get("error") or "No results"
        return out

    # ---------- Sandbox ----------

    sandbox_enabled = bool((cfg.get("sandbox") or {}).get("enabled", False))

    def _sandbox_refusal(request: Request) -> Optional[JSONResponse]:
        if not sandbox_enabled:
            log.info("sandbox request refused: disabled", extra={"path": request.url.path})
            return JSONResponse(status_code=403, content={"success": False, "error": SANDBOX_DISABLED_MESSAGE})
        origin = request.headers.get("origin")
        if not _sandbox_origin_allowed(origin, allow_origins):
            log.warning("sandbox request refused from origin %s", origin, extra={"path": request.url.path})
            return JSONResponse(status_code=403, content={"success": False, "error": SANDBOX_ORIGIN_MESSAGE})
        return None

    @app.post("/api/create-sandbox", tags=["sandbox"])
    async def create_sandbox(request: Request):
        refusal = _sandbox_refusal(request)
        if refusal is not None:
            return refusal
        sandbox = make_sandbox(root, cfg)
        previous = await session.set_sandbox(sandbox)
        if previous is not None:
            await _kill(previous)
        info = sandbox.info() if hasattr(sandbox, "info") else {}
        return {"success": True, **info}

    @app.post("/api/run-command", tags=["sandbox"])
    async def run_command(payload: RunCommandRequest, request: Request):
        refusal = _sandbox_refusal(request)
        if refusal is not None:
            return refusal
        command = (payload.command or "").strip()
        if not command:
            return JSONResponse(status_code=400, content={"success": False, "error": "Command is required"})

        try:
            sandbox = await session.get_sandbox()
            if sandbox is None:
                raise SandboxUnavailable(NO_SANDBOX_MESSAGE)
            cmd, args = split_command(command)
            result = await sandbox.run_command(cmd, args)
        except (SandboxUnavailable, SandboxClosed):
            log.info("run-command without an active sandbox")
            return JSONResponse(status_code=400, content={"success": False, "error": NO_SANDBOX_MESSAGE})
        except Exception as e:
            log.exception("run-command failed")
            return JSONResponse(status_code=500, content={"success": False, "error": str(e) or "Internal Server Error"})

        return {
            "success": True,
            "output": format_command_output(result),
            "exitCode": result.exit_code,
            "message": "Success" if result.exit_code == 0 else "Command failed",
        }

    @app.post("/api/kill-sandbox", tags=["sandbox"])
    async def kill_sandbox(request: Request):
        refusal = _sandbox_refusal(request)
        if refusal is not None:
            return refusal
        killed = await session.kill_sandbox()
        return {
            "success": True,
            "sandboxKilled": killed,
            "message": "Environment cleaned up successfully" if killed else "No active environment found to clean",
        }

    # ---------- Health ----------

    @app.get("/health")
    async def health():
        return {"ok": True, "providers": registry.available(), "projectRoot": str(root)}

    return app


async def _kill(sandbox: Any) -> None:
    res = sandbox.kill()
    if inspect.isawaitable(res):
        await res


def run(args_ns, cfg) -> int:
    import uvicorn

    root = resolve_project_root(getattr(args_ns, "project_root", None))
    _app = create_app(cfg=cfg, project_root=root)
    server = cfg.get("server") or {}
    host = getattr(args_ns, "host", None) or server.get("host", "127.0.0.1")
    port = int(getattr(args_ns, "port", None) or server.get("port", 8080))
    uvicorn.run(_app, host=host, port=port, log_level=os.getenv("CODEFORGE_LOGLEVEL", "info").lower())
    return 0
