"""Backend operations with one cancellable in-flight request per operation kind."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Coroutine, Dict, List, TypeVar

from .client import InferenceClient
from .errors import BackendError, NoOpCondition, OperationCancelled, Unconfigured
from .search import WEB_SEARCH_TOOL, WebSearchTool
from .translation import TranslationResult, Translator

__all__ = ["AssistantBackend", "OperationKind", "QUICK_ANSWER_SYSTEM_PROMPT"]

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

QUICK_ANSWER_SYSTEM_PROMPT = """You are a web search agent. Your only job is to answer the user's query using fresh information from the internet.

Rules:
- Always call the tool `web_search` exactly once per user query.
- Use the tool results as your primary source of truth.
- Return a single, direct answer to the user based only on the tool results and common knowledge needed for readability.
- Do not ask follow-up questions. Do not start or continue a conversation. Do not add suggestions or next steps.
- If the results are conflicting, summarize the consensus and note uncertainty briefly.
- If the results are insufficient, say so in one sentence and state what could not be verified.

Output:
- Respond with only the final answer text (no tool logs, no reasoning, no citations unless the application requires them)."""

_THINK_BLOCK = re.compile(r"^\s*<think>.*?</think>\s*", re.DOTALL)


class OperationKind(str, Enum):
    QUICK_ANSWER = "quick_answer"
    TRANSLATION = "translation"


@dataclass(slots=True)
class _RequestSlot:
    request_id: int
    task: asyncio.Task[Any]


class AssistantBackend:
    """Quick answers, translation, and model listing for the overlay.

    Each operation kind owns one global slot: starting a request cancels the
    one already running for that kind, and :meth:`cancel` aborts it on demand.
    An aborted request raises :class:`OperationCancelled` to its caller.
    """

    def __init__(
        self,
        client: InferenceClient,
        *,
        translator: Translator | None = None,
        search_tool: WebSearchTool | None = None,
    ) -> None:
        self._client = client
        self._translator = translator or Translator()
        self._search = search_tool or WebSearchTool()
        self._ids = itertools.count(1)
        self._slots: Dict[OperationKind, _RequestSlot] = {}

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def quick_answer(
        self,
        text: str,
        model: str,
        enable_thinking: bool,
        search_url: str = "",
        search_key: str = "",
    ) -> str:
        return await self._run_exclusive(
            OperationKind.QUICK_ANSWER,
            self._quick_answer(text, model, enable_thinking, search_url, search_key),
        )

    async def translate(self, text: str, target_language: str = "") -> TranslationResult:
        return await self._run_exclusive(
            OperationKind.TRANSLATION,
            self._translator.translate(text, target_language),
        )

    async def list_models(self) -> List[str]:
        return await self._client.list_models()

    def cancel(self, kind: OperationKind | str) -> int | None:
        """Abort the in-flight request of ``kind``; returns its id when one was running."""

        slot = self._slots.pop(OperationKind(kind), None)
        if slot is None:
            return None
        if not slot.task.done():
            slot.task.cancel()
            LOGGER.info("[%s][id=%d] cancel requested", OperationKind(kind).value, slot.request_id)
        return slot.request_id

    def is_running(self, kind: OperationKind | str) -> bool:
        slot = self._slots.get(OperationKind(kind))
        return slot is not None and not slot.task.done()

    async def aclose(self) -> None:
        for kind in list(self._slots):
            self.cancel(kind)
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _run_exclusive(self, kind: OperationKind, operation: Coroutine[Any, Any, T]) -> T:
        request_id = next(self._ids)
        previous = self._slots.get(kind)
        if previous is not None and not previous.task.done():
            LOGGER.info("[%s][id=%d] superseded by id=%d", kind.value, previous.request_id, request_id)
            previous.task.cancel()
        task: asyncio.Task[T] = asyncio.ensure_future(operation)
        slot = _RequestSlot(request_id=request_id, task=task)
        self._slots[kind] = slot
        LOGGER.info("[%s][id=%d] started", kind.value, request_id)
        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                LOGGER.info("[%s][id=%d] caller cancelled", kind.value, request_id)
                raise
            LOGGER.info("[%s][id=%d] canceled", kind.value, request_id)
            raise OperationCancelled() from None
        except Exception as exc:
            LOGGER.info("[%s][id=%d] ended error: %s", kind.value, request_id, exc)
            raise
        finally:
            if self._slots.get(kind) is slot:
                del self._slots[kind]
        LOGGER.info("[%s][id=%d] ended ok", kind.value, request_id)
        return result

    async def _quick_answer(
        self,
        text: str,
        model: str,
        enable_thinking: bool,
        search_url: str,
        search_key: str,
    ) -> str:
        if not text.strip():
            raise NoOpCondition("Empty text")
        if not model:
            raise Unconfigured("No model selected")
        LOGGER.info(
            "quick_answer model=%s enable_thinking=%s has_search_url=%s has_search_key=%s",
            model,
            enable_thinking,
            bool(search_url.strip()),
            bool(search_key.strip()),
        )
        # Qwen3-style models read the prompt suffix; others read the "think" field.
        suffix = " /think" if enable_thinking else " /no_think"
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": QUICK_ANSWER_SYSTEM_PROMPT},
            {"role": "user", "content": f"{text}{suffix}"},
        ]
        message = await self._client.chat(
            messages, model=model, tools=[WEB_SEARCH_TOOL], extra_body={"think": enable_thinking}
        )
        tool_calls = list(message.tool_calls or [])
        if not tool_calls:
            return _strip_reasoning(message.content)

        tool_messages: List[Dict[str, Any]] = []
        for call in tool_calls:
            function = getattr(call, "function", None)
            if function is None or function.name != WebSearchTool.name:
                continue
            query = _parse_query(function.arguments)
            if not query:
                continue
            LOGGER.info("Executing web_search with query=%r", query)
            try:
                result = await self._search.run(query, api_url=search_url, api_key=search_key)
            except (Unconfigured, BackendError) as exc:
                LOGGER.warning("web_search failed: %s", exc)
                result = f"Search failed: {exc}"
            tool_messages.append({"role": "tool", "tool_call_id": call.id, "content": result})

        messages.append(
            {
                "role": "assistant",
                "content": message.content or "",
                "tool_calls": [call.model_dump(exclude_none=True) for call in tool_calls],
            }
        )
        messages.extend(tool_messages)
        final = await self._client.chat(
            messages, model=model, tools=[WEB_SEARCH_TOOL], extra_body={"think": enable_thinking}
        )
        return _strip_reasoning(final.content)


def _parse_query(arguments: Any) -> str:
    if isinstance(arguments, dict):
        payload = arguments
    else:
        try:
            payload = json.loads(arguments or "{}")
        except (TypeError, json.JSONDecodeError):
            LOGGER.debug("web_search arguments were not JSON: %r", arguments)
            return ""
    query = payload.get("query") if isinstance(payload, dict) else None
    return query.strip() if isinstance(query, str) else ""


def _strip_reasoning(content: str | None) -> str:
    return _THINK_BLOCK.sub("", content or "").strip()
