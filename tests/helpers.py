"""Shared test helpers and stub classes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from spotlight.services.settings import Settings


class StaticSettings:
    """Settings source whose snapshot can be swapped by the test."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.current = settings or Settings(ollama_model="qwen3:4b")

    def snapshot(self) -> Settings:
        return self.current


@dataclass
class RecordingInvoke:
    """Backend stand-in that records every call and answers via ``responder``."""

    responder: Callable[[str, Settings], Awaitable[Any]] | None = None
    delay: float = 0.0
    calls: list[tuple[str, Settings]] = field(default_factory=list)

    async def __call__(self, text: str, settings: Settings) -> Any:
        self.calls.append((text, settings))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responder is not None:
            return await self.responder(text, settings)
        return f"answer:{text}"


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` on the running loop until it holds or ``timeout`` elapses."""

    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
