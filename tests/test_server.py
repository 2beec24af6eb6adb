"""
HTTP surface tests through FastAPI's TestClient.
"""

import asyncio
import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from codeforge.events import EventChannel
from codeforge.models import GenerateRequest
from codeforge.search_tool import WebSearch
from codeforge.server import NO_SANDBOX_MESSAGE, SANDBOX_DISABLED_MESSAGE, SANDBOX_ORIGIN_MESSAGE, create_app
from conftest import FakeProvider, make_registry, parse_sse

APPLY = "/api/apply-ai-code-stream"
GENERATE = "/api/generate-ai-code-stream"

SEARCH_ANSWER = {"Heading": "Zod", "Abstract": "Schema validation.", "AbstractURL": "https://zod.dev", "RelatedTopics": []}


@pytest.fixture
def make_client(cfg, project_dir: Path):
    def make(providers=None, **kwargs):
        if providers is None:
            providers = {"google": FakeProvider("google", ['Done.\n<file path="src/a.ts">export const a = 1;</file>'])}
        web_search = WebSearch(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=SEARCH_ANSWER)))
        app = create_app(cfg, project_dir, registry=make_registry(cfg, **providers), web_search=web_search, **kwargs)
        return TestClient(app)

    return make


class TestApplyEndpoint:

    def test_streams_events_and_writes(self, make_client, project_dir: Path):
        with make_client() as client:
            resp = client.post(APPLY, json={"files": [{"path": "src/a.ts", "content": "x"}]})
            assert "src/a.ts" in client.app.state.session.existing_files

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache, no-transform"
        assert resp.headers["x-accel-buffering"] == "no"
        events = parse_sse(resp.text)
        assert [e["type"] for e in events] == ["status", "file-progress", "file-progress", "file-complete", "complete"]
        assert events[-1]["results"]["filesCreated"] == ["src/a.ts"]
        assert (project_dir / "src/a.ts").read_text(encoding="utf-8") == "x"

    def test_generated_code_body(self, make_client, project_dir: Path):
        body = {"generatedCode": 'Intro\n<file path="src/x.ts">const x = 1;</file>'}
        with make_client() as client:
            events = parse_sse(client.post(APPLY, json=body).text)
        assert events[-1]["type"] == "complete"
        assert (project_dir / "src/x.ts").is_file()

    def test_invalid_json(self, make_client):
        with make_client() as client:
            resp = client.post(APPLY, content=b"{broken", headers={"content-type": "application/json"})
        assert resp.status_code == 200
        assert parse_sse(resp.text) == [{"type": "error", "error": "Invalid JSON in request body"}]

    def test_validation_failure_is_single_error(self, make_client, project_dir: Path):
        with make_client() as client:
            resp = client.post(APPLY, json={"files": [{"path": "../etc/passwd", "content": "x"}]})
        events = parse_sse(resp.text)
        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert events[0]["error"].startswith("Validation failed:")
        assert list(project_dir.iterdir()) == []

    def test_rejected_file_in_valid_batch(self, make_client):
        files = [{"path": "src/a.ts", "content": "a"}, {"path": "package-lock.json", "content": "{}"}]
        with make_client() as client:
            events = parse_sse(client.post(APPLY, json={"files": files}).text)
        assert {"type": "file-error", "fileName": "src/package-lock.json", "error": "Protected file: package-lock.json"} in events
        assert events[-1]["results"]["errors"] == ["src/package-lock.json: Protected file: package-lock.json"]


class TestGenerateEndpoint:

    @pytest.mark.parametrize("body", [{}, {"prompt": "   "}, {"prompt": 42}])
    def test_prompt_required(self, make_client, body):
        with make_client() as client:
            resp = client.post(GENERATE, json=body)
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Valid prompt is required"}

    def test_invalid_json(self, make_client):
        with make_client() as client:
            resp = client.post(GENERATE, content=b"nope", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid JSON in request body"

    def test_stream(self, make_client):
        with make_client() as client:
            resp = client.post(GENERATE, json={"prompt": "make a", "model": "gemini-2.0-flash-exp"})
        assert resp.status_code == 200
        assert ": keepalive" in resp.text
        events = parse_sse(resp.text)
        assert events[0] == {"type": "status", "message": "Initializing AI..."}
        assert events[-1]["type"] == "complete"
        assert events[-1]["files"] == 1
        assert events[-1]["explanation"] == "Done."

    def test_no_provider_is_error_event(self, make_client):
        with make_client(providers={}) as client:
            resp = client.post(GENERATE, json={"prompt": "x"})
        events = parse_sse(resp.text)
        assert resp.status_code == 200
        assert [e["type"] for e in events] == ["error"]


class TestSearchEndpoint:

    def test_query_required(self, make_client):
        with make_client() as client:
            resp = client.post("/api/search", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Query is required"}

    def test_results(self, make_client):
        with make_client() as client:
            data = client.post("/api/search", json={"query": "zod"}).json()
        assert data["results"][0]["title"] == "Zod"
        assert "message" not in data

    def test_disabled(self, make_client, cfg):
        cfg["search"]["enabled"] = False
        with make_client() as client:
            data = client.post("/api/search", json={"query": "zod"}).json()
        assert data == {"results": [], "message": "Web search is currently disabled."}


class TestSandboxEndpoints:

    @pytest.fixture(autouse=True)
    def sandbox_on(self, cfg):
        cfg["sandbox"]["enabled"] = True

    def test_run_command_without_sandbox(self, make_client):
        with make_client() as client:
            resp = client.post("/api/run-command", json={"command": "ls"})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": NO_SANDBOX_MESSAGE}

    def test_command_required(self, make_client):
        with make_client() as client:
            resp = client.post("/api/run-command", json={"command": "  "})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Command is required"

    def test_create_run_kill(self, make_client):
        with make_client() as client:
            created = client.post("/api/create-sandbox").json()
            ran = client.post("/api/run-command", json={"command": f"{sys.executable} -c print(42)"}).json()
            missing = client.post("/api/run-command", json={"command": "definitely-missing-binary-xyz"}).json()
            killed = client.post("/api/kill-sandbox").json()
            again = client.post("/api/kill-sandbox").json()
            after = client.post("/api/run-command", json={"command": "ls"})

        assert created["success"] is True
        assert created["sandboxId"].startswith("local-")
        assert ran["success"] is True
        assert ran["exitCode"] == 0
        assert ran["message"] == "Success"
        assert "42" in ran["output"]
        assert ran["output"].endswith("Process finished with exit code: 0")
        assert missing["exitCode"] == 127
        assert missing["message"] == "Command failed"
        assert killed == {"success": True, "sandboxKilled": True, "message": "Environment cleaned up successfully"}
        assert again["sandboxKilled"] is False
        assert after.status_code == 400

    def test_create_replaces_previous(self, make_client):
        made = []

        class Box:
            def __init__(self, n):
                self.n = n
                self.killed = False

            def info(self):
                return {"sandboxId": f"box-{self.n}"}

            async def kill(self):
                self.killed = True

        def factory(root, cfg):
            made.append(Box(len(made)))
            return made[-1]

        with make_client(sandbox_factory=factory) as client:
            assert client.post("/api/create-sandbox").json() == {"success": True, "sandboxId": "box-0"}
            client.post("/api/create-sandbox")
            assert made[0].killed is True
            assert made[1].killed is False
        assert made[1].killed is True


class TestSandboxGate:

    EVIL = {"Origin": "https://attacker.example"}

    def _factory(self, made):
        def factory(root, cfg):
            made.append(root)
            raise AssertionError("sandbox must not be created")

        return factory

    def test_disabled_by_default(self, make_client):
        made = []
        with make_client(sandbox_factory=self._factory(made)) as client:
            created = client.post("/api/create-sandbox", headers=self.EVIL)
            ran = client.post("/api/run-command", json={"command": "touch pwned"}, headers=self.EVIL)
            killed = client.post("/api/kill-sandbox")
        for resp in (created, ran, killed):
            assert resp.status_code == 403
            assert resp.json() == {"success": False, "error": SANDBOX_DISABLED_MESSAGE}
        assert made == []

    def test_wildcard_cors_refuses_foreign_origin(self, make_client, cfg, project_dir: Path):
        cfg["sandbox"]["enabled"] = True
        made = []
        with make_client(sandbox_factory=self._factory(made)) as client:
            created = client.post("/api/create-sandbox", headers=self.EVIL)
            ran = client.post("/api/run-command", json={"command": "touch pwned"}, headers=self.EVIL)
        assert created.status_code == ran.status_code == 403
        assert ran.json()["error"] == SANDBOX_ORIGIN_MESSAGE
        assert made == []
        assert not (project_dir / "pwned").exists()

    def test_wildcard_cors_allows_loopback_page(self, make_client, cfg):
        cfg["sandbox"]["enabled"] = True
        with make_client() as client:
            resp = client.post("/api/create-sandbox", headers={"Origin": "http://localhost:3000"})
            client.post("/api/kill-sandbox")
        assert resp.status_code == 200
        assert resp.json()["success"] is True

    def test_explicit_origin_list(self, make_client, cfg):
        cfg["sandbox"]["enabled"] = True
        cfg["server"]["cors_origins"] = ["https://app.example"]
        with make_client() as client:
            listed = client.post("/api/kill-sandbox", headers={"Origin": "https://app.example"})
            loopback = client.post("/api/kill-sandbox", headers={"Origin": "http://localhost:3000"})
        assert listed.status_code == 200
        assert loopback.status_code == 403


class TestShutdown:

    def test_in_flight_generation_is_awaited(self, cfg, project_dir: Path):
        class Stuck:
            name = "google"

            async def stream(self, system_prompt, messages, model_id, tools=None, **options):
                await asyncio.Event().wait()
                yield "never"

        app = create_app(cfg, project_dir, registry=make_registry(cfg, google=Stuck()))

        async def go():
            channel = EventChannel()
            async with app.router.lifespan_context(app):
                task = asyncio.create_task(app.state.orchestrator.run(GenerateRequest.model_validate({"prompt": "x"}), channel))
                app.state.tasks.add(task)
                await asyncio.sleep(0.01)
                assert not task.done()
            return task, channel

        task, channel = asyncio.run(go())
        assert task.cancelled()
        assert channel.closed


class TestMisc:

    def test_health(self, make_client, project_dir: Path):
        with make_client() as client:
            data = client.get("/health").json()
        assert data["ok"] is True
        assert data["providers"] == ["google"]
        assert data["projectRoot"] == str(project_dir.resolve())

    def test_cors_preflight(self, make_client):
        with make_client() as client:
            resp = client.options(
                APPLY,
                headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
            )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"
