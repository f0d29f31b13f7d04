"""Tests covering the application bootstrap helpers."""

from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path

import pytest

from spotlight import app
from spotlight.services.settings import JsonDocumentStore, Settings
from spotlight.services.settings_store import SettingsStore
from spotlight.ui.events import EventBus


def test_drain_event_loop_cancels_pending_tasks() -> None:
    loop = asyncio.new_event_loop()

    cancellation_flag = {"called": False}

    async def pending() -> None:
        try:
            await asyncio.sleep(0.1)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path exercised
            cancellation_flag["called"] = True
            raise

    loop.create_task(pending())

    try:
        app._drain_event_loop(loop)
        assert cancellation_flag["called"] is True
    finally:
        loop.close()


def test_drain_event_loop_ignores_closed_loop() -> None:
    loop = asyncio.new_event_loop()
    loop.close()

    app._drain_event_loop(loop)


def test_coerce_cli_overrides_casts_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "ollama_model=qwen3:4b",
            "enable_thinking=off",
            "max_retries=4",
            "request_timeout=12.5",
        ]
    )

    assert overrides["ollama_model"] == "qwen3:4b"
    assert overrides["enable_thinking"] is False
    assert overrides["max_retries"] == 4
    assert overrides["request_timeout"] == pytest.approx(12.5)


@pytest.mark.parametrize(
    "entry",
    ["not_a_setting=value", "ollama_model", "=value", "enable_thinking=maybe", "max_retries=many"],
)
def test_coerce_cli_overrides_rejects_invalid_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_dump_settings_redacts_search_key(tmp_path: Path) -> None:
    settings = Settings(ollama_model="llama3", web_search_api_key="super-secret-key")
    store = SettingsStore(JsonDocumentStore(tmp_path / "settings.json"), EventBus())
    buffer = io.StringIO()

    app._dump_settings(settings, store, overrides={"ollama_model": "llama3"}, stream=buffer)

    payload = json.loads(buffer.getvalue())
    assert "super-secret-key" not in buffer.getvalue()
    assert payload["settings"]["web_search_api_key"].startswith("su")
    assert payload["settings"]["ollama_model"] == "llama3"
    assert payload["meta"]["secret_backend"] == store.vault.name
    assert payload["meta"]["cli_overrides"] == ["ollama_model"]
    assert payload["meta"]["path"] == str(tmp_path / "settings.json")


def test_main_dump_settings_applies_cli_overrides(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(app, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(app.sys, "argv", ["spotlight"])
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"ollamaModel": "llama3"}), encoding="utf-8")

    app.main(
        [
            "--dump-settings",
            "--settings-path",
            str(settings_path),
            "--set",
            "enable_thinking=false",
        ]
    )

    payload = json.loads(capsys.readouterr().out)
    assert payload["settings"]["ollama_model"] == "llama3"
    assert payload["settings"]["enable_thinking"] is False
    assert payload["meta"]["cli_overrides"] == ["enable_thinking"]


def test_main_rejects_invalid_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(app, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(app.sys, "argv", ["spotlight"])

    with pytest.raises(SystemExit) as excinfo:
        app.main(["--settings-path", str(tmp_path / "s.json"), "--set", "bogus=1"])

    assert excinfo.value.code == 2


def test_load_settings_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    settings = app.load_settings(path)

    assert settings == Settings()


@pytest.mark.asyncio
async def test_build_context_wires_orchestrators(store: SettingsStore, bus: EventBus) -> None:
    context = app.build_context(store, bus)
    try:
        assert context.translation.kind == "translation"
        assert context.quick_answer.kind == "quick_answer"
        assert context.catalog.models == ()
        assert context.store is store
    finally:
        await app._shutdown(context)
