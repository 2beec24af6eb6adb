# codeforge/session_store.py
from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ConversationMessage:
    role: str
    content: str
    id: str = field(default_factory=lambda: f"msg-{uuid.uuid4().hex[:12]}")
    timestamp: int = field(default_factory=_now_ms)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConversationEdit:
    user_request: str
    target_files: List[str]
    edit_type: str = "MODIFY"
    confidence: float = 0.0
    outcome: str = "success"
    timestamp: int = field(default_factory=_now_ms)


@dataclass
class MajorChange:
    description: str
    files_affected: List[str]
    timestamp: int = field(default_factory=_now_ms)


_TARGETED = re.compile(r"\b(update|change|fix|modify|edit|remove|delete)\s+(\w+\s+)?(\w+)\b")
_COMPREHENSIVE = re.compile(r"\b(rebuild|recreate|redesign|overhaul|refactor)\b")
_PATTERN_HINTS = (
    (("hero",), "hero section edits"),
    (("header",), "header modifications"),
    (("color", "style"), "styling changes"),
    (("button",), "button updates"),
    (("animation",), "animation requests"),
)


def analyze_user_preferences(messages: Iterable[ConversationMessage]) -> Dict[str, Any]:
    """Derive edit style and up to three recurring request themes from user messages."""
    targeted = comprehensive = 0
    patterns: List[str] = []
    for m in messages:
        if m.role != "user":
            continue
        text = m.content.lower()
        if _TARGETED.search(text):
            targeted += 1
        if _COMPREHENSIVE.search(text):
            comprehensive += 1
        for needles, label in _PATTERN_HINTS:
            if any(n in text for n in needles) and label not in patterns:
                patterns.append(label)
    return {
        "commonPatterns": patterns[:3],
        "preferredEditStyle": "targeted" if targeted > comprehensive else "comprehensive",
    }


@dataclass
class ConversationState:
    conversation_id: str = field(default_factory=lambda: f"conv-{_now_ms()}")
    started_at: int = field(default_factory=_now_ms)
    last_updated: int = field(default_factory=_now_ms)
    messages: List[ConversationMessage] = field(default_factory=list)
    edits: List[ConversationEdit] = field(default_factory=list)
    major_changes: List[MajorChange] = field(default_factory=list)
    user_preferences: Dict[str, Any] = field(default_factory=dict)

    def add_message(self, msg: ConversationMessage, max_messages: int = 20, keep_messages: int = 15) -> bool:
        """Append and bound the history; returns True when it was trimmed."""
        self.messages.append(msg)
        self.last_updated = _now_ms()
        if len(self.messages) > max_messages:
            self.messages = self.messages[-keep_messages:]
            return True
        return False

    def add_edit(self, edit: ConversationEdit, max_edits: int = 10, keep_edits: int = 8) -> None:
        self.edits.append(edit)
        if len(self.edits) > max_edits:
            self.edits = self.edits[-keep_edits:]
        self.last_updated = _now_ms()

    def recent_messages(self, n: int, exclude_id: Optional[str] = None) -> List[ConversationMessage]:
        if n <= 0:
            return []
        return [m for m in self.messages[-n:] if m.id != exclude_id]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SessionContext:
    """App-scoped owner of conversation state, the sandbox handle and file tracking.

    One instance lives on `app.state.session` for the lifetime of the app; every
    mutation happens under `self._lock`.
    """

    def __init__(self, conversation_cfg: Optional[Dict[str, Any]] = None) -> None:
        cfg = conversation_cfg or {}
        self.max_messages = int(cfg.get("max_messages", 20))
        self.keep_messages = int(cfg.get("keep_messages", 15))
        self.max_edits = int(cfg.get("max_edits", 10))
        self.keep_edits = int(cfg.get("keep_edits", 8))

        self._lock = asyncio.Lock()
        self.conversation: Optional[ConversationState] = None
        self.sandbox: Optional[Any] = None
        self.manifest: Dict[str, str] = {}
        self.existing_files: set[str] = set()

    # ----------------------------
    # Conversation
    # ----------------------------

    async def ensure_conversation(self) -> ConversationState:
        async with self._lock:
            if self.conversation is None:
                self.conversation = ConversationState()
                log.info("conversation started", extra={"conversation_id": self.conversation.conversation_id})
            return self.conversation

    async def add_message(self, role: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> ConversationMessage:
        conv = await self.ensure_conversation()
        msg = ConversationMessage(role=role, content=content, metadata=dict(metadata or {}))
        async with self._lock:
            if conv.add_message(msg, self.max_messages, self.keep_messages):
                log.debug("trimmed conversation history", extra={"conversation_id": conv.conversation_id})
            if role == "user":
                conv.user_preferences = analyze_user_preferences(conv.messages)
        return msg

    async def recent_history(self, n: int, exclude_id: Optional[str] = None) -> List[Dict[str, str]]:
        conv = await self.ensure_conversation()
        async with self._lock:
            return [{"role": m.role, "content": m.content} for m in conv.recent_messages(n, exclude_id)]

    async def record_edit(self, edit: ConversationEdit, major_change: Optional[MajorChange] = None) -> None:
        conv = await self.ensure_conversation()
        async with self._lock:
            conv.add_edit(edit, self.max_edits, self.keep_edits)
            if major_change is not None:
                conv.major_changes.append(major_change)

    # ----------------------------
    # Manifest and file tracking
    # ----------------------------

    async def set_manifest(self, files: Dict[str, str]) -> None:
        async with self._lock:
            self.manifest = dict(files)

    async def track_files(self, paths: Iterable[str]) -> None:
        async with self._lock:
            self.existing_files.update(paths)

    # ----------------------------
    # Sandbox
    # ----------------------------

    async def set_sandbox(self, sandbox: Any) -> Optional[Any]:
        """Install a sandbox; returns the one it replaced (caller kills it)."""
        async with self._lock:
            previous, self.sandbox = self.sandbox, sandbox
            return previous

    async def get_sandbox(self) -> Optional[Any]:
        async with self._lock:
            return self.sandbox

    async def kill_sandbox(self) -> bool:
        async with self._lock:
            sandbox, self.sandbox = self.sandbox, None
            self.existing_files.clear()
        if sandbox is None:
            return False
        res = sandbox.kill()
        if inspect.isawaitable(res):
            await res
        return True

    async def aclose(self) -> None:
        try:
            await self.kill_sandbox()
        except Exception as e:
            log.warning("sandbox teardown failed: %s", e)


__all__ = [
    "ConversationMessage",
    "ConversationEdit",
    "MajorChange",
    "ConversationState",
    "SessionContext",
    "analyze_user_preferences",
]
