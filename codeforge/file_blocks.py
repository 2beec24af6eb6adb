# codeforge/file_blocks.py
"""
Recover file records from free-form model output.

Two grammars are recognised, each a pure function over the whole text:

  tagged   <file path="src/app/page.tsx"> ... </file>
  fenced   ```tsx path="src/app/page.tsx"
           ...
           ```

Fences without a path attribute are illustrations, not files, and are skipped.
`merge_blocks` dedupes by path: strictly longer content replaces what was seen
before, on a tie the earlier block stays. Grammars are always merged tagged
first, then fenced, so identical input gives identical output.

Streaming output is handled by re-running `extract` over the whole
accumulated buffer; buffers are bounded by a single response.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

_TAGGED = re.compile(r'<file\s+path="([^"]+)">([\s\S]*?)</file>')
_FENCED = re.compile(r'```(?:\w+)?\s*(?:path="([^"]+)")?\n([\s\S]*?)```')
_TAG_MARKER = re.compile(r"<file\b")


@dataclass(frozen=True)
class FileBlock:
    path: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "content": self.content}


@dataclass
class ExtractedCode:
    files: List[FileBlock] = field(default_factory=list)
    explanation: str = ""


def extract_tagged_blocks(text: str) -> List[FileBlock]:
    return [FileBlock(m.group(1), m.group(2).strip()) for m in _TAGGED.finditer(text or "")]


def extract_fenced_blocks(text: str) -> List[FileBlock]:
    out: List[FileBlock] = []
    for m in _FENCED.finditer(text or ""):
        if m.group(1):
            out.append(FileBlock(m.group(1), m.group(2).strip()))
    return out


def merge_blocks(*block_lists: Iterable[FileBlock]) -> List[FileBlock]:
    """Dedupe by path; strictly longer content wins, ties keep the first seen."""
    merged: Dict[str, str] = {}
    for blocks in block_lists:
        for b in blocks:
            prev = merged.get(b.path)
            if prev is None or len(b.content) > len(prev):
                merged[b.path] = b.content
    return [FileBlock(p, c) for p, c in merged.items()]


def _first_marker(text: str) -> Optional[int]:
    positions = []
    m = _TAG_MARKER.search(text)
    if m:
        positions.append(m.start())
    for fm in _FENCED.finditer(text):
        if fm.group(1):
            positions.append(fm.start())
            break
    return min(positions) if positions else None


def extract_explanation(text: str) -> str:
    text = text or ""
    pos = _first_marker(text)
    if pos is None:
        return text.strip()
    return text[:pos].strip()


def extract(text: str) -> ExtractedCode:
    files = merge_blocks(extract_tagged_blocks(text), extract_fenced_blocks(text))
    return ExtractedCode(files=files, explanation=extract_explanation(text))


class StreamingFileExtractor:
    """Re-scan the accumulated buffer after every chunk.

    `feed` returns the blocks that appeared, or grew, since the previous call.
    """

    def __init__(self) -> None:
        self._parts: List[str] = []
        self._seen: Dict[str, int] = {}

    @property
    def buffer(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: str) -> List[FileBlock]:
        if not chunk:
            return []
        self._parts.append(chunk)
        fresh: List[FileBlock] = []
        for block in extract(self.buffer).files:
            if self._seen.get(block.path, -1) < len(block.content):
                self._seen[block.path] = len(block.content)
                fresh.append(block)
        return fresh

    def result(self) -> ExtractedCode:
        return extract(self.buffer)


__all__ = [
    "FileBlock",
    "ExtractedCode",
    "extract_tagged_blocks",
    "extract_fenced_blocks",
    "merge_blocks",
    "extract_explanation",
    "extract",
    "StreamingFileExtractor",
]
