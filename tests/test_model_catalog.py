"""Tests for the installed-model catalog."""

from __future__ import annotations

import httpx
import pytest
from openai import APIConnectionError

from spotlight.ui.events import EventBus, ModelsRefreshed
from spotlight.ui.model_catalog import ModelCatalog


class _Lister:
    def __init__(self, *results) -> None:
        self.results = list(results)

    async def __call__(self):
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.asyncio
async def test_refresh_keeps_service_order(bus: EventBus) -> None:
    catalog = ModelCatalog(_Lister(["qwen3:4b", "llama3"]), bus)

    models = await catalog.refresh()

    assert models == ("qwen3:4b", "llama3")
    assert catalog.models == models
    assert catalog.error is None
    assert not catalog.is_loading


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_list() -> None:
    request = httpx.Request("GET", "http://127.0.0.1:11434/v1/models")
    catalog = ModelCatalog(_Lister(["llama3"], APIConnectionError(request=request)))

    await catalog.refresh()
    models = await catalog.refresh()

    assert models == ("llama3",)
    assert catalog.error is not None
    assert catalog.error.startswith("Failed to connect to Ollama")


@pytest.mark.asyncio
async def test_only_announced_refresh_publishes(bus: EventBus) -> None:
    seen: list[ModelsRefreshed] = []
    bus.subscribe(ModelsRefreshed, seen.append)
    catalog = ModelCatalog(_Lister(["a"], ["a", "b"]), bus)

    await catalog.refresh()
    await catalog.refresh(announce=True)

    assert [event.models for event in seen] == [("a", "b")]


@pytest.mark.asyncio
async def test_success_clears_previous_error() -> None:
    catalog = ModelCatalog(_Lister(RuntimeError("boom"), ["llama3"]))

    await catalog.refresh()
    assert catalog.error == "boom"
    await catalog.refresh()

    assert catalog.error is None
