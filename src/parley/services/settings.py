"""Conversation settings and their on-disk persistence.

Settings live in ``~/.parley/settings.json``. The API key is never written in
plaintext: :class:`SecretVault` encrypts it with a Fernet key stored next to the
settings file. Values are resolved in this order, later sources winning:

1. the persisted JSON payload
2. explicit overrides passed to :meth:`SettingsStore.load` (the CLI ``--set`` flags)
3. ``PARLEY_*`` environment variables
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "ENV_VARIABLES",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

_SETTINGS_DIR = Path.home() / ".parley"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_CIPHERTEXT_FIELD = "api_key_ciphertext"
_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})


def _parse_flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


# (environment variable, settings field, parser). The first variable set for a field wins.
_ENV_TABLE: tuple[tuple[str, str, Callable[[str], Any]], ...] = (
    ("PARLEY_API_KEY", "api_key", str),
    ("OPENAI_API_KEY", "api_key", str),
    ("PARLEY_BASE_URL", "base_url", str),
    ("PARLEY_MODEL", "model", str),
    ("PARLEY_VOICE", "voice", str),
    ("PARLEY_DEFAULT_AGENT", "default_agent", str),
    ("PARLEY_DEBUG_LOGGING", "debug_logging", _parse_flag),
    ("PARLEY_DEBUG_EVENT_LOGGING", "debug_event_logging", _parse_flag),
    ("PARLEY_REPLY_ON_TOOL_ERROR", "reply_on_tool_error", _parse_flag),
    ("PARLEY_TOOL_TIMEOUT", "tool_timeout", float),
    ("PARLEY_CONNECT_RETRIES", "connect_retries", lambda raw: int(raw, 10)),
)
ENV_VARIABLES: tuple[str, ...] = tuple(name for name, _, _ in _ENV_TABLE)


@dataclass(slots=True)
class Settings:
    """User-configurable settings for a realtime conversation.

    Attributes:
        model: Realtime model the session connects to.
        voice: Voice used for audio responses.
        instructions: Base instructions; the active agent's instructions are appended.
        tool_timeout: Seconds a capability may run before it fails; ``None`` disables.
        reply_on_tool_error: Send failed tool calls back to the model as an error
            ``function_call_output`` instead of dropping them.
        default_agent: Agent activated when the conversation is created.
        debug_event_logging: Write every protocol event to a JSONL file per session.
    """

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-realtime"
    voice: str = "alloy"
    instructions: str = ""
    modalities: list[str] = field(default_factory=lambda: ["audio", "text"])
    input_audio_transcription_model: str | None = "whisper-1"
    turn_detection: dict[str, Any] | None = field(default_factory=lambda: {"type": "server_vad"})
    tool_choice: str = "auto"
    tool_timeout: float | None = 30.0
    reply_on_tool_error: bool = False
    connect_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_agent: str | None = None
    debug_logging: bool = False
    debug_event_logging: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class SecretVault:
    """Fernet encryption for secrets, keyed by a file created on first use."""

    strategy = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._cipher().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.strategy}:{token}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: If the token was not produced with this vault's key.
        """

        if not token:
            return ""
        prefix, sep, body = token.partition(":")
        if not sep:
            body = token
        elif prefix != self.strategy:
            raise ValueError(f"Unsupported secret backend '{prefix}'")
        try:
            return self._cipher().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._read_or_create_key())
        return self._fernet

    def _read_or_create_key(self) -> bytes:
        path = self._key_path
        if path.exists():
            return path.read_bytes().strip()
        path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        pending = path.with_suffix(".tmp")
        pending.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(pending, 0o600)
        pending.replace(path)
        LOGGER.debug("Created secret key at %s", path)
        return key


class SettingsStore:
    """Load and save :class:`Settings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Resolve settings from disk, ``overrides`` and the environment.

        Files written by an older schema, or holding a plaintext ``api_key``, are
        rewritten in the current format.
        """

        payload = self._read_payload()
        settings = self._from_payload(payload) if payload else Settings()

        if payload and (payload.get("version") != _SETTINGS_VERSION or "api_key" in payload):
            try:
                self.save(settings)
                LOGGER.info("Migrated settings file %s to version %s", self._path, _SETTINGS_VERSION)
            except OSError as exc:  # pragma: no cover - disk failures
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = _merge(settings, overrides, source="CLI")
        environment = _environment_overrides()
        if environment:
            settings = _merge(settings, environment, source="environment")
        return settings

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically; the API key is stored encrypted."""

        data = asdict(settings)
        api_key = data.pop("api_key") or ""
        if api_key:
            data[_CIPHERTEXT_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy

        self._path.parent.mkdir(parents=True, exist_ok=True)
        pending = self._path.with_suffix(".tmp")
        pending.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        pending.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _from_payload(self, payload: Mapping[str, Any]) -> Settings:
        known = {item.name for item in fields(Settings)} - {"api_key"}
        values = {key: value for key, value in payload.items() if key in known}
        try:
            settings = Settings(**values)
        except TypeError as exc:
            LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            settings = Settings()

        api_key = ""
        ciphertext = payload.get(_CIPHERTEXT_FIELD)
        if ciphertext:
            try:
                api_key = self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
        elif payload.get("api_key"):
            LOGGER.info("Found plaintext API key; it will be re-saved encrypted")
            api_key = str(payload["api_key"])
        if api_key:
            settings = replace(settings, api_key=api_key)
        LOGGER.debug("Settings loaded from %s (model=%s)", self._path, settings.model)
        return settings


def _environment_overrides() -> Dict[str, Any]:
    resolved: Dict[str, Any] = {}
    for env_name, field_name, parse in _ENV_TABLE:
        raw = os.environ.get(env_name)
        if raw is None or field_name in resolved:
            continue
        try:
            resolved[field_name] = parse(raw)
        except ValueError:
            LOGGER.warning("Ignoring environment override %s=%r", env_name, raw)
    return resolved


def _merge(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    known = {item.name for item in fields(Settings)}
    changes = {key: value for key, value in overrides.items() if key in known and value is not None}
    if isinstance(changes.get("metadata"), Mapping):
        changes["metadata"] = {**settings.metadata, **changes["metadata"]}
    if not changes:
        return settings
    LOGGER.debug("Applying %s settings overrides: %s", source, sorted(changes))
    return replace(settings, **changes)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return f"{secret[:2]}{'*' * (len(secret) - 4)}{secret[-2:]}"
