"""End-to-end behavior of one DesktopSession through its Python API."""

from __future__ import annotations

import asyncio
import random
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vdesk.chat import FALLBACK_MESSAGES
from vdesk.config import build_config
from vdesk.errors import FailureKind, ReplyError
from vdesk.models import AppKind, GamesState, RpsChoice, RpsOutcome
from vdesk.session import DesktopSession


class EchoClient:
    async def reply(self, system_persona, history):
        return f"echo: {history[-1]['content']}"


class DownClient:
    async def reply(self, system_persona, history):
        raise ReplyError(FailureKind.unreachable, "connection refused")


def make_session(tmp_path: Path, client=None, **raw) -> DesktopSession:
    raw.setdefault("storage_path", str(tmp_path / "storage.json"))
    return DesktopSession(build_config(raw), reply_client=client or EchoClient(), rng=random.Random(5))


# ── profile ──────────────────────────────────────────────────────────────────

def test_onboarding_and_greeting(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    assert session.is_onboarded is False
    assert session.greeting() == "Welcome Guest"

    asyncio.run(session.complete_onboarding("Ada", "Asia/Tokyo"))

    assert session.greeting() == "Welcome Ada"
    assert session.local_time(at=0).utcoffset().total_seconds() == 9 * 3600
    # profile read once at start of the next session
    assert make_session(tmp_path).profile.name == "Ada"


def test_logout_ends_session(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run() -> None:
        await session.complete_onboarding("Ada", "UTC")
        g = await session.open_window(AppKind.games)
        await session.play_rps(g.id, "rock", RpsChoice.scissors)
        await session.logout()

    asyncio.run(_run())
    assert session.profile is None
    assert session.list_windows() == []
    assert (session.scoreboard.user, session.scoreboard.ai) == (0, 0)
    assert make_session(tmp_path).is_onboarded is False


def test_avatar_capture_recorded_on_profile_window(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run() -> None:
        await session.complete_onboarding("Ada", "UTC")
        p = await session.open_window(AppKind.profile)
        await session.set_avatar(image=b"jpeg-bytes", window_id=p.id)
        return p

    p = asyncio.run(_run())
    assert Path(session.profile.avatar).read_bytes() == b"jpeg-bytes"
    assert session.windows.state_of(p.id).captures == 1


def test_avatar_ignored_before_onboarding(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    assert asyncio.run(session.set_avatar(reference="cam.png")) is None
    assert session.profile is None


# ── chat ─────────────────────────────────────────────────────────────────────

def test_chat_with_collaborator_down(tmp_path: Path) -> None:
    session = make_session(tmp_path, client=DownClient())

    async def _run():
        win = await session.open_window(AppKind.chat)
        await session.send_chat(win.id, "rebecca", "hello")
        return session.chat_thread(win.id, "rebecca")

    thread = asyncio.run(_run())
    assert [(m.role.value, m.content) for m in thread.messages] == [
        ("user", "hello"),
        ("assistant", FALLBACK_MESSAGES[FailureKind.unreachable]),
    ]
    assert thread.pending is False


def test_chat_windows_are_isolated(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        a = await session.open_window(AppKind.chat)
        b = await session.open_window(AppKind.chat)
        await session.send_chat(a.id, "rebecca", "only in a")
        return a, b

    a, b = asyncio.run(_run())
    assert len(session.chat_thread(a.id, "rebecca").messages) == 2
    assert session.chat_thread(b.id, "rebecca").messages == []


def test_chat_to_non_chat_window_rejected(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        g = await session.open_window(AppKind.games)
        assert await session.send_chat(g.id, "rebecca", "hi") is None
        assert await session.send_chat("win_missing", "rebecca", "hi") is None
        assert session.chat_thread(g.id, "rebecca") is None

    asyncio.run(_run())


def test_closing_window_during_reply_does_not_break_session(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        win = await session.open_window(AppKind.chat)
        await session.submit_chat(win.id, "rebecca", "hello")
        await session.close_window(win.id)
        await session.chat.drain()
        other = await session.open_window(AppKind.chat)
        await session.send_chat(other.id, "rebecca", "again")
        return other

    other = asyncio.run(_run())
    assert len(session.chat_thread(other.id, "rebecca").messages) == 2


# ── games ────────────────────────────────────────────────────────────────────

def test_forced_rps_scenario(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        g = await session.open_window(AppKind.games)
        results = [
            (await session.play_rps(g.id, user, ai))[0]
            for user, ai in zip(["rock", "rock", "paper"], [RpsChoice.scissors, RpsChoice.rock, RpsChoice.rock])
        ]
        return g, results

    g, results = asyncio.run(_run())
    assert [r.outcome for r in results] == [RpsOutcome.win, RpsOutcome.tie, RpsOutcome.win]
    score = session.windows.state_of(g.id).rps.score
    assert (score.user, score.ai) == (2, 0)


def test_session_scoped_score_survives_reopen(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        g1 = await session.open_window(AppKind.games)
        await session.play_rps(g1.id, "paper", RpsChoice.rock)
        await session.close_window(g1.id)
        g2 = await session.open_window(AppKind.games)
        await session.play_rps(g2.id, "paper", RpsChoice.scissors)
        return g2

    g2 = asyncio.run(_run())
    state = session.windows.state_of(g2.id)
    assert (state.rps.score.user, state.rps.score.ai) == (1, 1)
    assert state.rps.last_result.outcome is RpsOutcome.lose


def test_window_scoped_score(tmp_path: Path) -> None:
    session = make_session(tmp_path, rps_score_scope="window")

    async def _run():
        g1 = await session.open_window(AppKind.games)
        g2 = await session.open_window(AppKind.games)
        await session.play_rps(g1.id, "rock", RpsChoice.scissors)
        return g1, g2

    g1, g2 = asyncio.run(_run())
    assert session.windows.state_of(g1.id).rps.score.user == 1
    assert session.windows.state_of(g2.id).rps.score.user == 0


def test_reset_keeps_score(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        g = await session.open_window(AppKind.games)
        await session.play_rps(g.id, "rock", RpsChoice.scissors)
        assert await session.reset_rps(g.id) is True
        return g

    g = asyncio.run(_run())
    rps = session.windows.state_of(g.id).rps
    assert rps.last_result is None
    assert rps.score.user == 1


def test_doodle_round_always_guessed(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        g = await session.open_window(AppKind.games)
        word = await session.doodle_start(g.id)
        result = await session.doodle_guess(g.id)
        return word, result

    word, result = asyncio.run(_run())
    assert word in result


def test_doodle_strokes_and_clear(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        g = await session.open_window(AppKind.games)
        assert await session.doodle_stroke(g.id, (0, 0), (1, 1)) is False
        await session.doodle_start(g.id)
        assert await session.doodle_stroke(g.id, (0, 0), (1, 1)) is True
        assert await session.doodle_stroke(g.id, (1, 1), (2, 0)) is True
        games = session.windows.state_of(g.id)
        assert isinstance(games, GamesState)
        assert len(games.doodle.strokes) == 2
        await session.doodle_clear(g.id)
        assert games.doodle.strokes == []

    asyncio.run(_run())


def test_game_ops_on_wrong_window_are_noops(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        c = await session.open_window(AppKind.chat)
        assert await session.play_rps(c.id, "rock") is None
        assert await session.reset_rps(c.id) is False
        assert await session.doodle_start(c.id) is None
        assert await session.doodle_guess("missing") is None

    asyncio.run(_run())


# ── events / snapshot ────────────────────────────────────────────────────────

def test_window_events(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    seen = []
    session.events.subscribe(lambda event, data: seen.append(event))

    async def _run():
        a = await session.open_window(AppKind.chat)
        await session.open_window(AppKind.games)
        await session.focus_window(a.id)
        await session.move_window(a.id, 10, 10)
        await session.close_window(a.id)
        await session.close_window(a.id)
        await session.focus_window("missing")

    asyncio.run(_run())
    assert seen == ["window.opened", "window.opened", "window.focused", "window.moved", "window.closed"]


def test_snapshot_is_back_to_front_with_state(tmp_path: Path) -> None:
    session = make_session(tmp_path)

    async def _run():
        a = await session.open_window(AppKind.chat)
        b = await session.open_window(AppKind.games)
        await session.focus_window(a.id)
        return a, b

    a, b = asyncio.run(_run())
    snap = session.snapshot()
    assert [w["id"] for w in snap["windows"]] == [b.id, a.id]
    assert snap["windows"][0]["state"]["kind"] == "games"
    assert snap["windows"][1]["state"] == {"kind": "chat", "threads": {}}
    assert snap["onboarded"] is False


class _ClosingSocket:
    """Closes the games window as soon as the rps.played event goes out."""

    def __init__(self, session: DesktopSession) -> None:
        self.session = session
        self.win_id = None

    async def send_text(self, payload: str) -> None:
        if '"rps.played"' in payload:
            await self.session.close_window(self.win_id)


def test_rps_score_survives_window_closed_during_event(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    ws = _ClosingSocket(session)

    async def _run():
        await session.events.add(ws)
        g = await session.open_window(AppKind.games)
        ws.win_id = g.id
        return g, await session.play_rps(g.id, "rock", RpsChoice.scissors)

    g, (result, score) = asyncio.run(_run())
    assert result.outcome is RpsOutcome.win
    assert score == {"user": 1, "ai": 0}
    assert session.windows.get(g.id) is None
