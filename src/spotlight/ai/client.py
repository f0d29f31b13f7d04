"""Async client for the local inference service (Ollama's OpenAI-compatible API)."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, MutableMapping, Sequence, cast

import httpx
from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from openai.types.chat import ChatCompletionMessage, ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import BackendError

LOGGER = logging.getLogger(__name__)
_OLLAMA_API_KEY = "ollama"  # Ollama ignores the key but the SDK requires one.


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to reach the inference service."""

    base_url: str = "http://127.0.0.1:11434"
    request_timeout: float | None = 30.0
    max_retries: int = 2
    retry_min_seconds: float = 0.25
    retry_max_seconds: float = 2.0
    debug_logging: bool = False

    @property
    def api_base(self) -> str:
        base = self.base_url.rstrip("/")
        return base if base.endswith("/v1") else f"{base}/v1"


class InferenceClient:
    """Non-streaming chat and model listing with retry semantics."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str,
        tools: Sequence[ChatCompletionToolParam] | None = None,
        **extra_params: Any,
    ) -> ChatCompletionMessage:
        """Run one chat completion and return the assistant message."""

        payload: dict[str, Any] = {
            "model": model,
            "messages": self._coerce_messages(messages),
            "stream": False,
        }
        if tools:
            payload["tools"] = list(tools)
        if extra_params:
            payload.update(extra_params)
        LOGGER.debug(
            "Chat completion via %s with %s message(s), tools=%s",
            model,
            len(payload["messages"]),
            bool(tools),
        )
        if self._settings.debug_logging:
            self._log_payload(payload)

        response = None
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.chat.completions.create(**payload)
        choices = getattr(response, "choices", None) or []
        if not choices or choices[0].message is None:
            raise BackendError("No response from model")
        return choices[0].message

    async def list_models(self) -> List[str]:
        """Return the installed model identifiers in the order the service reports them."""

        async with self._models_lock:
            response = None
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.models.list()
            data = getattr(response, "data", None) or []
            return [item.id for item in data if getattr(item, "id", None)]

    async def aclose(self) -> None:
        """Close the underlying SDK client."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=_OLLAMA_API_KEY,
            base_url=settings.api_base,
            timeout=settings.request_timeout,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    APITimeoutError,
                    InternalServerError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, MutableMapping):
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            else:
                try:
                    normalized.append(cast(ChatCompletionMessageParam, dict(message)))
                except TypeError as exc:  # pragma: no cover - defensive guard
                    raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _log_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        except (TypeError, ValueError):
            LOGGER.debug("Chat payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Chat payload:\n%s", serialized)
