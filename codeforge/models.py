# codeforge/models.py
"""
Request bodies for the HTTP endpoints and the apply result types.

Camel-case aliases match the browser client. Batch size and path length
limits come from the pydantic validation context (`max_files`,
`max_path_length`) so they follow the loaded config.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

from runtimes.path_safety import has_parent_segment, is_absolute_path

DEFAULT_MAX_FILES = 100
DEFAULT_MAX_PATH_LENGTH = 500


def _limit(info: ValidationInfo, key: str, default: int) -> int:
    ctx = info.context or {}
    try:
        return int(ctx.get(key, default))
    except (TypeError, ValueError):
        return default


# -------- Schemas --------
class FileRecord(BaseModel):
    path: str = Field(..., description="Project-relative, slash separated path.")
    content: str = Field(..., description="Literal file body, written verbatim.")

    @field_validator("path")
    @classmethod
    def _check_path(cls, v: str, info: ValidationInfo) -> str:
        if not v:
            raise ValueError("File path cannot be empty")
        if len(v) > _limit(info, "max_path_length", DEFAULT_MAX_PATH_LENGTH):
            raise ValueError("File path too long")
        if has_parent_segment(v):
            raise ValueError('Path traversal detected: ".." not allowed')
        if is_absolute_path(v):
            raise ValueError("Absolute paths not allowed")
        expected = v[2:] if v.startswith("./") else v
        if posixpath.normpath(v) != expected:
            raise ValueError("Invalid path format")
        return v


class ApplyCodeRequest(BaseModel):
    files: List[FileRecord] = Field(default_factory=list)
    generated_code: Optional[str] = Field(None, alias="generatedCode")
    packages: Optional[List[str]] = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _check_batch_size(self, info: ValidationInfo) -> "ApplyCodeRequest":
        if not self.files:
            raise ValueError("At least one file is required")
        if len(self.files) > _limit(info, "max_files", DEFAULT_MAX_FILES):
            raise ValueError("Too many files in single request")
        return self


class GenerationContext(BaseModel):
    sandbox_id: Optional[str] = None
    current_files: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateRequest(BaseModel):
    prompt: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    context: Optional[GenerationContext] = None
    is_edit: bool = False
    enable_search: bool = True

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def has_prompt(self) -> bool:
        return bool(self.prompt and self.prompt.strip())


class SearchRequest(BaseModel):
    query: Optional[str] = None


class RunCommandRequest(BaseModel):
    command: Optional[str] = None


# -------- Results --------
@dataclass(frozen=True)
class FileOutcome:
    """Result of processing one file record; failures are values, not exceptions."""

    path: str
    ok: bool
    action: Optional[str] = None  # created | updated | skipped
    error: Optional[str] = None

    @classmethod
    def written(cls, path: str, action: str) -> "FileOutcome":
        return cls(path=path, ok=True, action=action)

    @classmethod
    def failed(cls, path: str, error: str) -> "FileOutcome":
        return cls(path=path, ok=False, error=error)


@dataclass
class ApplyResult:
    files_created: List[str] = field(default_factory=list)
    files_updated: List[str] = field(default_factory=list)
    files_skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    packages: List[str] = field(default_factory=list)

    def record(self, outcome: FileOutcome) -> None:
        if not outcome.ok:
            self.errors.append(f"{outcome.path}: {outcome.error}")
        elif outcome.action == "created":
            self.files_created.append(outcome.path)
        elif outcome.action == "updated":
            self.files_updated.append(outcome.path)
        elif outcome.action == "skipped":
            self.files_skipped.append(outcome.path)

    @property
    def success_count(self) -> int:
        return len(self.files_created) + len(self.files_updated)

    def summary(self) -> str:
        msg = f"Applied {self.success_count} file(s) successfully"
        if self.errors:
            msg += f", {len(self.errors)} error(s)"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filesCreated": list(self.files_created),
            "filesUpdated": list(self.files_updated),
            "filesSkipped": list(self.files_skipped),
            "errors": list(self.errors),
            "packages": list(self.packages),
        }


__all__ = [
    "FileRecord",
    "ApplyCodeRequest",
    "GenerationContext",
    "GenerateRequest",
    "SearchRequest",
    "RunCommandRequest",
    "FileOutcome",
    "ApplyResult",
]
