"""Tests covering the command-line entry point."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Mapping

import pytest

from parley import app
from parley.conversation import Conversation
from parley.realtime.event_log import SessionEventLogger
from parley.services.settings import SecretVault, Settings, SettingsStore
from parley.tools.registry import Agent, AgentRegistry
from tests.helpers import FakeTransport


class _ScriptedTransport(FakeTransport):
    """Opens immediately and answers every response request with a short reply."""

    def subscribe(self, listener):
        unsubscribe = super().subscribe(listener)
        self.push({"type": "session.created"})
        return unsubscribe

    def send(self, event: Mapping[str, Any]) -> None:
        super().send(event)
        if event["type"] == "response.create":
            self.push({"type": "response.audio_transcript.delta", "response_id": "r1", "delta": "Hi "})
            self.push({"type": "response.audio_transcript.delta", "response_id": "r1", "delta": "there"})
            self.push({"type": "response.audio_transcript.done", "response_id": "r1"})


def test_coerce_cli_overrides_uses_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "voice=ash",
            "tool_timeout=2.5",
            "connect_retries=4",
            "reply_on_tool_error=yes",
            "modalities=[\"text\"]",
            "default_agent=none",
            "turn_detection={\"type\": \"semantic_vad\"}",
        ]
    )

    assert overrides == {
        "voice": "ash",
        "tool_timeout": 2.5,
        "connect_retries": 4,
        "reply_on_tool_error": True,
        "modalities": ["text"],
        "default_agent": None,
        "turn_detection": {"type": "semantic_vad"},
    }


@pytest.mark.parametrize("entry", ["voice", "=x", "nope=1", "reply_on_tool_error=maybe"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_dump_settings_redacts_api_key(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))
    stream = io.StringIO()

    app._dump_settings(Settings(api_key="sk-secret-key"), store, overrides={"voice": "ash"}, stream=stream)

    output = json.loads(stream.getvalue())
    assert output["settings"]["api_key"] == "sk*********ey"
    assert output["meta"]["cli_overrides"] == ["voice"]
    assert output["meta"]["secret_backend"] == "fernet"


def test_main_dump_settings_applies_overrides(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    app.main(["--settings-path", str(tmp_path / "settings.json"), "--set", "voice=sage", "--dump-settings"])

    output = json.loads(capsys.readouterr().out)
    assert output["settings"]["voice"] == "sage"


def test_main_rejects_invalid_override(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["--settings-path", str(tmp_path / "settings.json"), "--set", "bogus"])

    assert excinfo.value.code == 2


@pytest.mark.asyncio
async def test_run_conversation_prints_committed_messages() -> None:
    transports: list[_ScriptedTransport] = []

    async def _factory() -> _ScriptedTransport:
        transport = _ScriptedTransport()
        transports.append(transport)
        return transport

    settings = Settings()
    conversation = Conversation(
        settings,
        AgentRegistry([Agent(name="default")]),
        transport_factory=_factory,
        event_logger=SessionEventLogger(enabled=False),
    )
    stream = io.StringIO()

    await app.run_conversation(settings, ["hello"], listen_seconds=0.01, conversation=conversation, stream=stream)

    assert stream.getvalue() == "assistant> Hi there\n"
    assert transports[0].user_texts() == ["hello"]
    assert transports[0].closed
