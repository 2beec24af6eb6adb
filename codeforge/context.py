# codeforge/context.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Protocol

_WORD = re.compile(r"[A-Za-z0-9_]+")
_STOP = frozenset(
    "a an and are as at be by can do for from i in is it make me my of on or please "
    "the this that to update change with you".split()
)

DEFAULT_SYSTEM_PROMPT = """You are an expert full-stack developer specializing in modern web development with Next.js, React, and TypeScript.

When generating code:
- Use TypeScript with proper types
- Follow Next.js App Router patterns
- Write clean, maintainable code
- Include proper error handling
- Add helpful comments for complex logic
- Use modern ES6+ syntax

When using tools:
- Use web search for current information, API documentation, or real-time data
- Provide accurate, up-to-date information

Format your response with:
1. Brief explanation of changes
2. Complete code in <file path="...">...</file> tags
3. List any required packages for installation"""


@dataclass(frozen=True)
class SearchResult:
    path: str
    score: float
    reason: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {"path": self.path, "score": self.score, "reason": self.reason}


class ContextSearch(Protocol):
    def search(self, prompt: str, manifest: Mapping[str, str]) -> List[SearchResult]:
        ...

    def select_target_file(self, results: List[SearchResult], prompt: str) -> SearchResult:
        ...


def _tokenize(s: str) -> List[str]:
    return [w.lower() for w in _WORD.findall(s)]


def _query_tokens(prompt: str) -> List[str]:
    return [t for t in _tokenize(prompt) if t not in _STOP and len(t) > 1]


def _mentions(prompt: str, rel: str) -> bool:
    low = prompt.lower()
    rel_low = rel.lower()
    base = rel_low.rsplit("/", 1)[-1]
    return rel_low in low or (len(base) > 3 and base in low)


def _score_rel(rel: str, content: str, q_tokens: List[str]) -> float:
    rel_low = rel.lower()
    path_tokens = _tokenize(rel_low)
    content_tokens = _tokenize(content)
    score = 0.0
    for t in q_tokens:
        score += 3.0 * path_tokens.count(t)
        # Long files repeat identifiers; cap so content can't swamp the path.
        score += 1.5 * min(content_tokens.count(t), 5)
    phrase = " ".join(q_tokens[:3])
    if phrase and phrase in rel_low:
        score += 2.0
    return score


class KeywordContextSearch:
    """Rank manifest files by keyword overlap with the request."""

    def __init__(self, max_results: int = 10) -> None:
        self.max_results = max(1, int(max_results))

    def search(self, prompt: str, manifest: Mapping[str, str]) -> List[SearchResult]:
        q_tokens = _query_tokens(prompt)
        scored: List[SearchResult] = []
        for rel, content in manifest.items():
            score = _score_rel(rel, content or "", q_tokens)
            reasons = []
            if _mentions(prompt, rel):
                score += 10.0
                reasons.append("named in request")
            hits = sorted({t for t in q_tokens if t in _tokenize(rel)})
            if hits:
                reasons.append("path matches " + ", ".join(hits))
            if score > 0:
                scored.append(SearchResult(rel, round(score, 2), "; ".join(reasons) or "content matches request terms"))
        scored.sort(key=lambda r: -r.score)
        return scored[: self.max_results]

    def select_target_file(self, results: List[SearchResult], prompt: str) -> SearchResult:
        if not results:
            raise ValueError("no candidate files")
        best = max(r.score for r in results)
        top = [r for r in results if r.score == best]
        for r in top:
            if _mentions(prompt, r.path):
                return r
        return top[0]


def get_file_contents(paths: Iterable[str], current_files: Mapping[str, str]) -> Dict[str, str]:
    return {p: current_files[p] for p in paths if p in current_files}


def format_files_for_prompt(files: Mapping[str, str]) -> str:
    blocks = []
    for path, content in files.items():
        blocks.append(f'<file path="{path}">\n{content}\n</file>')
    return "\n\n".join(blocks) if blocks else "(file contents unavailable)"


def format_search_results(results: List[SearchResult]) -> str:
    lines = ["Relevant files (most relevant first):"]
    for i, r in enumerate(results, start=1):
        line = f"{i}. {r.path} (score {r.score:g})"
        if r.reason:
            line += f" - {r.reason}"
        lines.append(line)
    return "\n".join(lines)


def build_edit_system_prompt(prompt: str, results: List[SearchResult], files: Mapping[str, str]) -> str:
    return (
        "You are an expert code editor. You have analyzed the codebase and identified the "
        "following relevant files for the user's request:\n\n"
        f"{format_search_results(results)}\n\n"
        "Current file contents:\n"
        f"{format_files_for_prompt(files)}\n\n"
        f"User request: {prompt}\n\n"
        "Please provide targeted, precise edits to address the user's request. Focus on the "
        "identified files and maintain code quality. Return every changed file in full inside "
        '<file path="...">...</file> tags.'
    )


__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "SearchResult",
    "ContextSearch",
    "KeywordContextSearch",
    "get_file_contents",
    "format_files_for_prompt",
    "format_search_results",
    "build_edit_system_prompt",
]
