# runtimes/sandbox.py
"""
Local command-execution sandbox.

A LocalSandbox runs commands as subprocesses with the project root as working
directory, through the canonical runner (no shell, bounded by a timeout).
It is the in-process stand-in for a remote preview environment: one instance
is active per app, created by /api/create-sandbox and dropped by
/api/kill-sandbox.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .runner import CommandResult, run_command

log = logging.getLogger(__name__)


class SandboxClosed(RuntimeError):
    """Raised when a command is sent to a sandbox that was killed."""


class LocalSandbox:
    def __init__(
        self,
        root: Union[str, Path],
        *,
        command_timeout: Optional[float] = 120.0,
        subprocess_module=None,
    ) -> None:
        self.root = Path(root).resolve()
        self.sandbox_id = f"local-{uuid.uuid4().hex[:12]}"
        self.command_timeout = command_timeout
        self.created_at = time.time()
        self._subprocess = subprocess_module
        self._killed = False

    @property
    def alive(self) -> bool:
        return not self._killed

    def info(self) -> Dict[str, Any]:
        return {
            "sandboxId": self.sandbox_id,
            "root": str(self.root),
            "createdAt": int(self.created_at * 1000),
            "alive": self.alive,
        }

    async def run_command(self, cmd: str, args: Sequence[str] = ()) -> CommandResult:
        if self._killed:
            raise SandboxClosed(f"sandbox {self.sandbox_id} was killed")
        argv: List[str] = [cmd] + [str(a) for a in args]
        log.info("sandbox command: %s", " ".join(argv), extra={"action": "run-command"})
        return await asyncio.to_thread(
            run_command,
            argv,
            cwd=str(self.root),
            timeout=self.command_timeout,
            subprocess_module=self._subprocess,
        )

    async def kill(self) -> None:
        self._killed = True
        log.info("sandbox killed: %s", self.sandbox_id)


def split_command(command: str) -> tuple[str, List[str]]:
    """Whitespace split into (cmd, args), matching what a terminal UI sends."""
    parts = command.strip().split()
    return parts[0], parts[1:]


def format_command_output(result: CommandResult) -> str:
    """Terminal-style transcript: stdout, an ERROR section for stderr, exit code."""
    stderr = result.stderr
    if result.error and result.error not in stderr:
        stderr = f"{stderr}\n{result.error}" if stderr.strip() else result.error
    parts = [
        result.stdout if result.stdout.strip() else "",
        f"ERROR:\n{stderr}" if stderr.strip() else "",
        f"\nProcess finished with exit code: {result.exit_code}",
    ]
    return "\n".join(p for p in parts if p)


__all__ = ["LocalSandbox", "SandboxClosed", "split_command", "format_command_output"]
