"""Application bootstrap helpers for the AI Spotlight overlay."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, cast

from .ai.backend import AssistantBackend
from .ai.client import ClientSettings, InferenceClient
from .services.settings import JsonDocumentStore, Settings
from .services.settings_store import SettingsStore
from .ui.events import EventBus
from .ui.model_catalog import ModelCatalog
from .ui.query_orchestrator import QueryOrchestrator, quick_answer_binding, translation_binding
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class QtRuntime:
    """Container returned by :func:`create_qapp`."""

    app: Any
    loop: asyncio.AbstractEventLoop


@dataclass(slots=True)
class AppContext:
    """Everything the surfaces share for one process."""

    bus: EventBus
    store: SettingsStore
    backend: AssistantBackend
    catalog: ModelCatalog
    translation: QueryOrchestrator
    quick_answer: QueryOrchestrator
    surfaces: list[Any] = field(default_factory=list)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))
    _install_qt_message_handler()


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    bus: EventBus | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(JsonDocumentStore(path), bus or EventBus(), overrides=overrides)
    return active_store.load()


def build_context(store: SettingsStore, bus: EventBus, *, debug_logging: bool = False) -> AppContext:
    """Wire the backend and both query orchestrators around ``store``."""

    settings = store.snapshot()
    client = InferenceClient(
        ClientSettings(
            base_url=settings.ollama_base_url,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            debug_logging=debug_logging or settings.debug_logging,
        )
    )
    backend = AssistantBackend(client)
    return AppContext(
        bus=bus,
        store=store,
        backend=backend,
        catalog=ModelCatalog(backend.list_models, bus),
        translation=QueryOrchestrator(translation_binding(backend), store, bus),
        quick_answer=QueryOrchestrator(quick_answer_binding(backend), store, bus),
    )


def create_qapp(settings: Settings) -> QtRuntime:
    """Create a qasync-powered QApplication instance."""

    from PySide6.QtWidgets import QApplication
    from qasync import QEventLoop

    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    app = cast(Any, QApplication.instance() or QApplication(sys.argv))
    app.setApplicationName("AI Spotlight")
    app.setApplicationDisplayName("AI Spotlight")
    # The overlay hides instead of closing; the tray keeps the process alive.
    app.setQuitOnLastWindowClosed(False)

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)
    _LOGGER.debug("Qt runtime ready (ollama=%s)", settings.ollama_base_url)
    return QtRuntime(app=app, loop=loop)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `spotlight` console script."""

    args, passthrough = _parse_cli_args(argv)
    _rewrite_sys_argv(passthrough)

    debug = _env_flag("SPOTLIGHT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("SPOTLIGHT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    bus: EventBus = EventBus()
    store = SettingsStore(JsonDocumentStore(resolved_path), bus, overrides=cli_overrides or None)
    settings = load_settings(store=store)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
        debug = True

    runtime = create_qapp(settings)
    context = build_context(store, bus, debug_logging=debug)
    spotlight, options = _build_surfaces(context)
    tray = _build_tray_icon(runtime.app, context, spotlight, options)
    if tray is None or args.options:
        options.show()
    spotlight.show_overlay()

    loop = runtime.loop
    loop.create_task(_startup(context, options))
    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(_shutdown(context))
        _drain_event_loop(loop)
        loop.close()


async def _startup(context: AppContext, options: Any) -> None:
    """Populate the model list and pick a default model when none is stored."""

    await context.store.initialize(context.backend.list_models)
    await options.refresh_models(announce=False)


async def _shutdown(context: AppContext) -> None:
    """Flush pending settings and release network resources."""

    for surface in context.surfaces:
        detach = getattr(surface, "detach", None)
        if callable(detach):
            detach()
    await context.translation.aclose()
    await context.quick_answer.aclose()
    try:
        await context.store.aclose()
    except Exception as exc:  # pragma: no cover - defensive logging
        _LOGGER.warning("Settings flush on shutdown failed: %s", exc)
    try:
        await context.backend.aclose()
    except Exception as exc:  # pragma: no cover - defensive logging
        _LOGGER.debug("Backend shutdown failed: %s", exc)


def _build_surfaces(context: AppContext) -> tuple[Any, Any]:
    from .widgets.options_dialog import OptionsDialog
    from .widgets.spotlight_window import SpotlightWindow
    from .widgets.toast import ToastWindow

    spotlight = SpotlightWindow(
        translation=context.translation,
        quick_answer=context.quick_answer,
        bus=context.bus,
    )
    options = OptionsDialog(store=context.store, catalog=context.catalog, bus=context.bus)
    toast = ToastWindow(context.bus)
    context.surfaces.extend([spotlight, options, toast])
    return spotlight, options


def _build_tray_icon(app: Any, context: AppContext, spotlight: Any, options: Any) -> Any | None:
    """Tray menu with show/options/quit actions; ``None`` when no tray exists."""

    from PySide6.QtWidgets import QMenu, QStyle, QSystemTrayIcon

    if not QSystemTrayIcon.isSystemTrayAvailable():
        _LOGGER.info("System tray unavailable; opening the options window instead.")
        return None

    icon = app.style().standardIcon(QStyle.StandardPixmap.SP_FileDialogContentsView)
    tray = QSystemTrayIcon(icon, app)
    menu = QMenu()
    menu.addAction("Show Spotlight").triggered.connect(spotlight.show_overlay)
    menu.addAction("Options...").triggered.connect(options.show)
    menu.addSeparator()
    menu.addAction("Quit").triggered.connect(app.quit)
    tray.setContextMenu(menu)
    tray.setToolTip("AI Spotlight")
    tray.activated.connect(lambda _reason: spotlight.show_overlay())
    tray.show()
    # QSystemTrayIcon does not take ownership of its menu.
    context.surfaces.extend([tray, menu])
    return tray


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel outstanding tasks and shutdown async machinery before closing."""

    if loop.is_closed():
        return

    async def _cleanup() -> None:
        current_task = None
        with contextlib.suppress(RuntimeError):
            current_task = asyncio.current_task(loop=loop)

        tasks = [
            task
            for task in asyncio.all_tasks(loop)
            if not task.done() and task is not current_task
        ]
        if tasks:
            _LOGGER.debug("Canceling %s pending asyncio task(s) before shutdown.", len(tasks))
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for step in (loop.shutdown_asyncgens, loop.shutdown_default_executor):
            with contextlib.suppress(RuntimeError, NotImplementedError):
                await step()

    try:
        loop.run_until_complete(_cleanup())
    except RuntimeError as exc:  # pragma: no cover - defensive guard
        _LOGGER.debug("Unable to drain asyncio loop: %s", exc)


def _install_qt_message_handler() -> None:
    """Redirect Qt warnings to the Python logging stack."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    level_map = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }

    def _handler(mode, context, message):  # type: ignore[no-untyped-def]
        del context
        level = level_map.get(mode, logging.INFO)
        logging.getLogger("PySide6").log(level, message)

    qInstallMessageHandler(_handler)


def _parse_cli_args(argv: Sequence[str] | None) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(
        prog="spotlight",
        add_help=True,
        description="Launch the AI Spotlight overlay or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.spotlight/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override settings for this run without persisting them (repeatable).",
    )
    parser.add_argument(
        "--options",
        action="store_true",
        help="Open the options window at start.",
    )
    return parser.parse_known_args(argv)


def _rewrite_sys_argv(passthrough: Sequence[str]) -> None:
    program = sys.argv[0] if sys.argv else "spotlight"
    sys.argv = [program, *passthrough]


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    defaults = {item.name: item.default for item in fields(Settings)}
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in defaults:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type(defaults[key]), raw_value.strip())
    return overrides


def _coerce_value(target: type, raw_value: str) -> Any:
    normalized = raw_value.strip()
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    return normalized


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.document.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": settings.redacted(), "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("SPOTLIGHT_"))
