# codeforge/errors.py
from __future__ import annotations

from typing import List, Optional


class CodeforgeError(Exception):
    """Base class for codeforge errors."""


class RequestValidationFailed(CodeforgeError):
    """A request body was malformed; nothing has been done yet."""

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.details = list(details or [])


class ProviderUnavailable(CodeforgeError):
    """No usable LLM provider is configured for the request."""


class ProviderStreamError(CodeforgeError):
    """The provider failed while producing the text stream."""


class ContextBuildFailed(CodeforgeError):
    """Edit-context search or formatting failed; the request continues without it."""


class SandboxUnavailable(CodeforgeError):
    """No active sandbox session exists for a command request."""


__all__ = [
    "CodeforgeError",
    "RequestValidationFailed",
    "ProviderUnavailable",
    "ProviderStreamError",
    "ContextBuildFailed",
    "SandboxUnavailable",
]
