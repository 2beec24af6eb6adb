# codeforge/providers.py
"""
LLM providers behind one streaming interface.

Both supported vendors expose OpenAI-compatible chat completion endpoints, so a
single adapter built on the `openai` SDK (AsyncOpenAI with a custom base_url)
serves them:

  google   https://generativelanguage.googleapis.com/v1beta/openai/   GOOGLE_GENERATIVE_AI_API_KEY
  groq     https://api.groq.com/openai/v1                              GROQ_API_KEY

Provider contract (what the orchestrator relies on; test doubles implement it):

  async for fragment in provider.stream(system_prompt, messages, model_id, tools=None, **options):
      ...

Tools are declared with a JSON schema and an async handler (ToolSpec). When the
model answers with tool calls the handlers run, their JSON results are appended
to the conversation and streaming resumes, up to `max_tool_rounds` rounds.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

import httpx
import openai
from openai import AsyncOpenAI

from .errors import ProviderStreamError, ProviderUnavailable

log = logging.getLogger(__name__)

PROVIDER_ORDER = ("google", "groq")


@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: Callable[..., Awaitable[Any]]

    def as_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class Provider(Protocol):
    name: str

    def stream(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        model_id: str,
        tools: Optional[List[ToolSpec]] = None,
        **options: Any,
    ) -> AsyncIterator[str]:
        ...


async def run_tool(tool: Optional[ToolSpec], raw_args: str) -> Dict[str, Any]:
    """Run one tool call; failures become an error payload for the model."""
    if tool is None:
        return {"success": False, "error": "unknown tool"}
    try:
        args = json.loads(raw_args or "{}")
    except ValueError:
        return {"success": False, "error": "tool arguments are not valid JSON"}
    if not isinstance(args, dict):
        return {"success": False, "error": "tool arguments must be an object"}
    try:
        result = await tool.handler(**args)
    except TypeError as e:
        return {"success": False, "error": f"bad tool arguments: {e}"}
    return result if isinstance(result, dict) else {"success": True, "result": result}


class OpenAICompatibleProvider:
    """Streaming chat completions against an OpenAI-compatible endpoint."""

    def __init__(
        self,
        name: str,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout: float = 300.0,
        max_tool_rounds: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.name = name
        self.base_url = base_url
        self.max_tool_rounds = max(0, int(max_tool_rounds))
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=float(timeout), connect=30.0),
            transport=transport,
        )
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, http_client=self._http_client)

    async def aclose(self) -> None:
        await self._http_client.aclose()

    async def stream(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        model_id: str,
        tools: Optional[List[ToolSpec]] = None,
        **options: Any,
    ) -> AsyncIterator[str]:
        convo: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        convo.extend(dict(m) for m in messages)
        tool_map = {t.name: t for t in (tools or [])}
        rounds = 0

        while True:
            payload: Dict[str, Any] = {"model": model_id, "messages": convo, "stream": True}
            if options.get("temperature") is not None:
                payload["temperature"] = options["temperature"]
            if options.get("max_tokens") is not None:
                payload["max_tokens"] = options["max_tokens"]
            if tool_map and rounds < self.max_tool_rounds:
                payload["tools"] = [t.as_openai() for t in tool_map.values()]

            calls: Dict[int, Dict[str, str]] = {}
            text_parts: List[str] = []
            try:
                response = await self._client.chat.completions.create(**payload)
                async for chunk in response:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta is None:
                        continue
                    if delta.content:
                        text_parts.append(delta.content)
                        yield delta.content
                    for tc in delta.tool_calls or []:
                        slot = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                        if tc.id:
                            slot["id"] = tc.id
                        if tc.function is not None:
                            if tc.function.name:
                                slot["name"] = tc.function.name
                            if tc.function.arguments:
                                slot["arguments"] += tc.function.arguments
            except openai.OpenAIError as e:
                log.warning("provider stream failed: %s", e, extra={"provider": self.name, "model": model_id})
                raise ProviderStreamError(f"{self.name} request failed: {e}") from e

            if not calls:
                return

            rounds += 1
            ordered = [calls[i] for i in sorted(calls)]
            convo.append(
                {
                    "role": "assistant",
                    "content": "".join(text_parts) or None,
                    "tool_calls": [
                        {
                            "id": c["id"] or f"call_{i}",
                            "type": "function",
                            "function": {"name": c["name"], "arguments": c["arguments"] or "{}"},
                        }
                        for i, c in enumerate(ordered)
                    ],
                }
            )
            for i, c in enumerate(ordered):
                log.info("tool call: %s", c["name"], extra={"provider": self.name, "model": model_id})
                result = await run_tool(tool_map.get(c["name"]), c["arguments"])
                convo.append(
                    {
                        "role": "tool",
                        "tool_call_id": c["id"] or f"call_{i}",
                        "content": json.dumps(result, ensure_ascii=False),
                    }
                )


@dataclass
class Selection:
    provider_name: str
    model_id: str
    max_tokens: int
    provider: Any
    fell_back: bool = False


@dataclass
class ProviderRegistry:
    providers: Dict[str, Any] = field(default_factory=dict)
    models: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    default_models: Dict[str, str] = field(default_factory=dict)
    default_model_key: str = "gemini-2.0-flash-exp"
    default_max_tokens: int = 8192

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], env: Optional[Mapping[str, str]] = None) -> "ProviderRegistry":
        env = os.environ if env is None else env
        llm = cfg.get("llm") or {}
        providers: Dict[str, Any] = {}
        defaults: Dict[str, str] = {}
        for name, pcfg in (cfg.get("providers") or {}).items():
            defaults[name] = str(pcfg.get("default_model") or "")
            key = (env.get(str(pcfg.get("api_key_env") or "")) or "").strip()
            if not key:
                continue
            providers[name] = OpenAICompatibleProvider(
                name,
                key,
                base_url=pcfg.get("base_url"),
                timeout=float(llm.get("timeout_sec", 300.0)),
                max_tool_rounds=int(llm.get("max_tool_rounds", 2)),
            )
        log.info("providers configured: %s", ", ".join(sorted(providers)) or "none")
        return cls(
            providers=providers,
            models=dict(cfg.get("models") or {}),
            default_models=defaults,
            default_model_key=str(llm.get("default_model") or "gemini-2.0-flash-exp"),
            default_max_tokens=int(llm.get("max_tokens", 8192)),
        )

    def available(self) -> List[str]:
        ordered = [p for p in PROVIDER_ORDER if p in self.providers]
        return ordered + sorted(p for p in self.providers if p not in PROVIDER_ORDER)

    def _fallback_for(self, name: str) -> Optional[str]:
        for candidate in self.available():
            if candidate != name:
                return candidate
        return None

    def select(self, provider: Optional[str] = None, model: Optional[str] = None) -> Selection:
        """Resolve (provider, model id) for a request.

        Order: explicit provider, then the model-key table, then the first
        configured provider. An unconfigured choice fails over to another
        configured provider with that provider's default model.
        """
        model_key = (model or "").strip() or self.default_model_key
        mapped = self.models.get(model_key)

        if provider:
            chosen = provider
            if mapped and mapped.get("provider") == provider:
                model_id = str(mapped["model"])
            elif mapped:
                model_id = self.default_models.get(provider) or model_key
            else:
                model_id = model_key
        elif mapped:
            chosen = str(mapped["provider"])
            model_id = str(mapped["model"])
        else:
            available = self.available()
            chosen = available[0] if available else PROVIDER_ORDER[0]
            model_id = model_key

        max_tokens = int((mapped or {}).get("max_tokens") or self.default_max_tokens)

        if chosen in self.providers:
            return Selection(chosen, model_id, max_tokens, self.providers[chosen])

        fallback = self._fallback_for(chosen)
        if fallback is None:
            raise ProviderUnavailable(
                f"Selected provider '{chosen}' is not configured. "
                "Set GOOGLE_GENERATIVE_AI_API_KEY or GROQ_API_KEY."
            )
        fb_model = self.default_models.get(fallback) or model_id
        log.info(
            "provider '%s' not available, falling back to '%s'",
            chosen,
            fallback,
            extra={"provider": fallback, "model": fb_model},
        )
        return Selection(fallback, fb_model, self.default_max_tokens, self.providers[fallback], fell_back=True)

    async def aclose(self) -> None:
        for p in self.providers.values():
            closer = getattr(p, "aclose", None)
            if closer is not None:
                await closer()


__all__ = [
    "ToolSpec",
    "Provider",
    "OpenAICompatibleProvider",
    "ProviderRegistry",
    "Selection",
    "PROVIDER_ORDER",
    "run_tool",
]
