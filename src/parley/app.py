"""Command-line entry point for running a realtime conversation from a terminal."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .chat.message_model import ChatMessage
from .conversation import Conversation
from .errors import SessionNegotiationError
from .realtime.session import SessionState
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})
_NULL_VALUES = frozenset({"none", "null"})
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `parley` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or os.environ.get("PARLEY_DEBUG", "").strip().lower() in _TRUE_VALUES
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("PARLEY_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
        if args.model:
            cli_overrides["model"] = args.model
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    try:
        asyncio.run(run_conversation(settings, args.text, listen_seconds=args.listen))
    except SessionNegotiationError as exc:
        print(f"Unable to open realtime session: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


async def run_conversation(
    settings: Settings,
    messages: Sequence[str],
    *,
    listen_seconds: float = 10.0,
    conversation: Conversation | None = None,
    stream: TextIO | None = None,
) -> Conversation:
    """Open a session, send ``messages`` and print committed chat rows."""

    destination = stream or sys.stdout
    active = conversation or Conversation(settings)

    def _print_message(message: ChatMessage) -> None:
        sender = getattr(message.content, "sender", "tool")
        destination.write(f"{sender}> {message.text}\n")
        destination.flush()

    remove = active.add_message_listener(_print_message)
    try:
        await active.start()
        if not await _wait_for_state(active, SessionState.OPEN, timeout=listen_seconds):
            _LOGGER.warning("Session did not open within %ss", listen_seconds)
            return active
        for text in messages:
            active.send_text(text)
        await asyncio.sleep(listen_seconds)
        await active.drain()
    finally:
        remove()
        await active.close()
    return active


async def _wait_for_state(
    conversation: Conversation,
    state: SessionState,
    *,
    timeout: float,
    interval: float = 0.05,
) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(0.0, timeout)
    while conversation.session_state is not state:
        if conversation.session_state is SessionState.IDLE or loop.time() >= deadline:
            return False
        await asyncio.sleep(interval)
    return True


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Talk to a realtime model from the terminal or inspect the configuration.",
    )
    parser.add_argument(
        "--text",
        metavar="MESSAGE",
        action="append",
        default=[],
        help="Send MESSAGE once the session is open (repeatable).",
    )
    parser.add_argument(
        "--listen",
        metavar="SECONDS",
        type=float,
        default=10.0,
        help="How long to wait for the session to open and for replies (default: 10).",
    )
    parser.add_argument("--model", metavar="NAME", help="Realtime model to connect to (same as --set model=NAME).")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.parley/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings into typed :class:`Settings` overrides.

    Raises:
        ValueError: For malformed entries, unknown fields or unparseable values.
    """

    hints = get_type_hints(Settings)
    known = {item.name for item in fields(Settings)}
    overrides: Dict[str, Any] = {}
    for entry in items:
        key, sep, raw = entry.partition("=")
        key = key.strip()
        if not sep:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in known:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(hints[key], raw.strip())
    return overrides


def _coerce_value(annotation: Any, raw: str) -> Any:
    members = [arg for arg in get_args(annotation) if arg is not type(None)]
    nullable = type(None) in get_args(annotation)
    if nullable and raw.lower() in _NULL_VALUES:
        return None
    base = get_origin(annotation) or annotation
    if nullable and members:
        base = get_origin(members[0]) or members[0]
    parser = _PARSERS.get(base)
    return parser(raw) if parser is not None else raw


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES or lowered in _FALSE_VALUES:
        return lowered in _TRUE_VALUES
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _parse_json_of(kind: type) -> Callable[[str], Any]:
    def _parse(raw: str) -> Any:
        try:
            value = json.loads(raw or json.dumps(kind()))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Expected a JSON {kind.__name__}, got {raw!r}") from exc
        if not isinstance(value, kind):
            raise ValueError(f"Expected a JSON {kind.__name__}, got {raw!r}")
        return value

    return _parse


_PARSERS: Dict[Any, Callable[[str], Any]] = {
    bool: _parse_bool,
    int: lambda raw: int(raw, 10),
    float: float,
    list: _parse_json_of(list),
    dict: _parse_json_of(dict),
}


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    """Print the effective settings as JSON with the API key redacted."""

    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    report = {
        "settings": payload,
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.strategy,
            "cli_overrides": sorted(overrides),
            "environment_variables": sorted(name for name in os.environ if name.startswith("PARLEY_")),
        },
    }
    destination = stream or sys.stdout
    destination.write(json.dumps(report, indent=2) + "\n")
