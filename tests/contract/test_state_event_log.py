from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vdesk.config import load_config
from vdesk.events import EventHub
from vdesk.models import AppKind, RpsChoice
from vdesk.session import DesktopSession


class _FakeWebSocket:
    def __init__(self) -> None:
        self.messages = []

    async def send_text(self, payload: str) -> None:
        self.messages.append(payload)


class _QuietClient:
    async def reply(self, system_persona, history):
        return "ok"


def test_state_event_log(tmp_path: Path) -> None:
    log_path = tmp_path / "events.ndjson"
    env = {
        "VDESK_STORAGE_PATH": str(tmp_path / "storage.json"),
        "VDESK_EVENT_LOG_PATH": str(log_path),
    }
    session = DesktopSession(load_config(environ=env), reply_client=_QuietClient())

    async def _run() -> None:
        win = await session.open_window(AppKind.games)
        await session.play_rps(win.id, "rock", RpsChoice.paper)
        await session.close_window(win.id)

    asyncio.run(_run())

    lines = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines() if line.strip()]
    assert [e["event"] for e in lines] == ["window.opened", "rps.played", "window.closed"]
    played = lines[1]["data"]
    assert played["outcome"] == "lose"
    assert played["score"] == {"user": 0, "ai": 1}


def test_sessions_are_isolated(tmp_path: Path) -> None:
    async def _run() -> None:
        hub_a = EventHub()
        hub_b = EventHub()
        ws_a = _FakeWebSocket()
        ws_b = _FakeWebSocket()
        await hub_a.add(ws_a)
        await hub_b.add(ws_b)

        cfg_a = load_config(environ={"VDESK_STORAGE_PATH": str(tmp_path / "a.json")})
        cfg_b = load_config(environ={"VDESK_STORAGE_PATH": str(tmp_path / "b.json")})
        ses_a = DesktopSession(cfg_a, reply_client=_QuietClient(), events=hub_a)
        ses_b = DesktopSession(cfg_b, reply_client=_QuietClient(), events=hub_b)

        await ses_a.complete_onboarding("Ada")
        await ses_a.open_window(AppKind.chat)

        assert len(ses_a.list_windows()) == 1
        assert ses_b.list_windows() == []
        assert ses_b.is_onboarded is False

        assert len(ws_a.messages) == 2
        assert ws_b.messages == []

    asyncio.run(_run())
