"""Text-generation collaborator: one async client over Anthropic or OpenAI.

``generate()`` is the raw contract (system prompt, user message, token cap in;
text and token usage out).  Rate-limit, server-error and transport failures are
retried with exponential backoff; anything else, or an exhausted retry budget,
surfaces as a typed :class:`LLMCallError`.  ``call()`` is the JSON convenience
layer used by the advisor prompts.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any

import httpx

log = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 2048


class LLMCallError(Exception):
    """LLM call failed or returned unparseable output."""
    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


@dataclass
class GenerationResult:
    text: str
    tokens_used: int = 0
    model: str = ""


def is_retryable_status(status_code: int | None) -> bool:
    return status_code is not None and (status_code == 429 or 500 <= status_code < 600)


_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse a JSON object out of model output, tolerating a markdown fence."""
    text = text.strip()
    m = _FENCE_RE.search(text)
    if m:
        text = m.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMCallError(f"LLM returned invalid JSON: {text[:200]}", retryable=False) from exc
    if not isinstance(data, dict):
        raise LLMCallError(f"LLM returned non-object JSON: {text[:200]}", retryable=False)
    return data


class LLMClient:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        timeout_seconds: float = 60.0,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.timeout_seconds = timeout_seconds
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._sdk: Any = None
        self._init_client()

    @classmethod
    def from_settings(cls, settings) -> LLMClient:
        return cls(
            provider=settings.llm_provider,
            model=settings.llm_model or None,
            max_retries=settings.llm_max_retries,
            backoff_seconds=settings.llm_backoff_seconds,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    def _init_client(self) -> None:
        # The SDKs' own retry loops are disabled; generate() owns retrying.
        timeout = httpx.Timeout(self.timeout_seconds)
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._sdk = anthropic
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY"),
                max_retries=0,
                timeout=timeout,
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            self._sdk = openai
            kwargs: dict[str, Any] = {"max_retries": 0, "timeout": timeout}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def generate(
        self, system: str, user: str, max_tokens: int = DEFAULT_MAX_TOKENS, *, json_mode: bool = False,
    ) -> GenerationResult:
        """Run one completion, retrying retryable failures with exponential backoff."""
        attempt = 0
        while True:
            try:
                return await self._request(system, user, max_tokens, json_mode)
            except LLMCallError as exc:
                if not exc.retryable or attempt >= self.max_retries:
                    raise
                delay = self.backoff_seconds * (2 ** attempt)
                log.warning(
                    "LLM call failed (%s), retry %d/%d in %.1fs",
                    exc, attempt + 1, self.max_retries, delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def call(self, system: str, user: str, max_tokens: int = DEFAULT_MAX_TOKENS) -> dict[str, Any]:
        """Send system+user message to the LLM, return parsed JSON."""
        result = await self.generate(system, user, max_tokens, json_mode=True)
        return parse_json_response(result.text)

    async def _request(self, system: str, user: str, max_tokens: int, json_mode: bool) -> GenerationResult:
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
                text = response.content[0].text.strip()
                usage = response.usage
                tokens = (usage.input_tokens + usage.output_tokens) if usage else 0
            else:
                kwargs: dict[str, Any] = {}
                if json_mode:
                    kwargs["response_format"] = {"type": "json_object"}
                response = await self._client.chat.completions.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    **kwargs,
                )
                text = response.choices[0].message.content or ""
                tokens = response.usage.total_tokens if response.usage else 0
        except LLMCallError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc
        return GenerationResult(text=text, tokens_used=tokens, model=self.model)

    def _classify(self, exc: Exception) -> LLMCallError:
        status = getattr(exc, "status_code", None)
        if status is not None:
            return LLMCallError(
                f"LLM API call failed ({status}): {exc}",
                retryable=is_retryable_status(status), status_code=status,
            )
        transport = (httpx.TransportError, asyncio.TimeoutError)
        if self._sdk is not None:
            transport += (self._sdk.APIConnectionError,)
        return LLMCallError(
            f"LLM API call failed: {exc}", retryable=isinstance(exc, transport),
        )
