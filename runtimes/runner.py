# runtimes/runner.py
"""
Canonical subprocess runner for the runtimes package.

Goals:
- One implementation used by every command-execution path (the local sandbox
  included), so timeouts and decoding behave the same everywhere.
- No shell: commands are argv lists (a string is split with shlex) and argv[0]
  is resolved on PATH before spawning.
- Safe decoding: output is read as UTF-8 with errors="replace".
- Timeouts and missing executables come back as a structured CommandResult,
  never as an uncaught TimeoutExpired / FileNotFoundError.
"""

from __future__ import annotations

import os
import shlex
import shutil
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

MISSING_EXECUTABLE_EXIT = 127
TIMEOUT_EXIT = 124


@dataclass
class CommandResult:
    argv: List[str]
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    missing_executable: bool = False
    elapsed_sec: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.missing_executable

    @property
    def exit_code(self) -> int:
        """Shell-style exit status, also for runs that never produced one."""
        if self.returncode is not None:
            return self.returncode
        if self.missing_executable:
            return MISSING_EXECUTABLE_EXIT
        if self.timed_out:
            return TIMEOUT_EXIT
        return 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "argv": list(self.argv),
            "returncode": self.returncode,
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "timedOut": self.timed_out,
            "missingExecutable": self.missing_executable,
            "elapsedSec": self.elapsed_sec,
            "error": self.error,
        }


def _is_windows() -> bool:
    return sys.platform.startswith("win")


def to_argv(cmd: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(cmd, (list, tuple)):
        return [str(x) for x in cmd]
    return shlex.split(str(cmd), posix=not _is_windows())


def _resolve_binary(argv: List[str]) -> Tuple[Optional[str], Optional[str]]:
    """Resolve argv[0]; returns (resolved_path, error_msg)."""
    if not argv:
        return None, "empty command provided"

    exe = argv[0]
    looks_like_path = (os.path.sep in exe) or (_is_windows() and ":" in exe)
    if looks_like_path and os.path.exists(os.path.abspath(exe)):
        return os.path.abspath(exe), None

    resolved = shutil.which(exe)
    if not resolved:
        return None, f"executable not found: {exe}"
    return os.path.abspath(resolved), None


def _normalize_output(val: Any) -> str:
    if val is None:
        return ""
    if isinstance(val, (bytes, bytearray)):
        return val.decode("utf-8", errors="replace")
    return str(val)


def run_command(
    cmd: Union[str, Sequence[str]],
    *,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
    env: Optional[Dict[str, str]] = None,
    subprocess_module=None,
) -> CommandResult:
    """
    Run a command and return a CommandResult. Never raises for missing
    executables, timeouts or spawn failures; those are reported on the result.

    `subprocess_module` is injectable for tests (defaults to stdlib subprocess).
    """
    if subprocess_module is None:
        import subprocess as subprocess_module  # type: ignore

    t0 = time.time()
    argv = to_argv(cmd)
    result = CommandResult(argv=list(argv))

    def _done() -> CommandResult:
        result.elapsed_sec = round(time.time() - t0, 6)
        return result

    resolved, err = _resolve_binary(argv)
    if not resolved:
        result.missing_executable = bool(argv)
        result.error = err
        return _done()

    proc_env = os.environ.copy()
    if env:
        proc_env.update(env)

    try:
        proc = subprocess_module.Popen(
            [resolved] + argv[1:],
            cwd=cwd,
            env=proc_env,
            shell=False,
            stdout=subprocess_module.PIPE,
            stderr=subprocess_module.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as e:
        result.missing_executable = True
        result.error = str(e)
        return _done()
    except OSError as e:
        result.error = str(e)
        return _done()

    try:
        out, errout = proc.communicate(timeout=timeout)
        result.returncode = proc.returncode
        result.stdout = _normalize_output(out)
        result.stderr = _normalize_output(errout)
    except subprocess_module.TimeoutExpired:
        result.timed_out = True
        result.error = "timeout"
        proc.kill()
        try:
            out, errout = proc.communicate(timeout=1)
            result.stdout = _normalize_output(out)
            result.stderr = _normalize_output(errout)
        except subprocess_module.TimeoutExpired:
            # keep whatever we have
            pass
    return _done()


__all__ = ["CommandResult", "run_command", "to_argv", "MISSING_EXECUTABLE_EXIT", "TIMEOUT_EXIT"]
