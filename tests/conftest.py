"""
Shared test fixtures and fakes.
"""

import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from codeforge.config import DEFAULT_CONFIG
from codeforge.events import ProgressEvent
from codeforge.providers import ProviderRegistry
from runtimes.path_safety import PathPolicy


class FakeProvider:
    """Provider double: yields canned fragments, optionally fails afterwards."""

    def __init__(self, name: str, chunks: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.name = name
        self.chunks = list(chunks or [])
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def stream(self, system_prompt, messages, model_id, tools=None, **options):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "messages": list(messages),
                "model_id": model_id,
                "tools": tools,
                "options": options,
            }
        )
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class EventCollector:
    """Async emit callback that records events."""

    def __init__(self):
        self.events: List[ProgressEvent] = []

    async def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.events]

    @property
    def types(self) -> List[str]:
        return [e.type for e in self.events]


def parse_sse(text: str) -> List[Dict[str, Any]]:
    """Decode `data:` frames, ignoring comment (keepalive) frames."""
    out = []
    for frame in text.split("\n\n"):
        frame = frame.strip()
        if frame.startswith("data: "):
            out.append(json.loads(frame[len("data: "):]))
    return out


def make_registry(cfg: Dict[str, Any], **providers: Any) -> ProviderRegistry:
    return ProviderRegistry(
        providers=dict(providers),
        models=copy.deepcopy(cfg["models"]),
        default_models={name: p["default_model"] for name, p in cfg["providers"].items()},
        default_model_key=cfg["llm"]["default_model"],
        default_max_tokens=cfg["llm"]["max_tokens"],
    )


@pytest.fixture
def cfg() -> Dict[str, Any]:
    """A private copy of the default configuration."""
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Empty project root for apply runs."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def policy(project_dir: Path, cfg: Dict[str, Any]) -> PathPolicy:
    return PathPolicy.from_config(project_dir, cfg["paths"])
