from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar
from zoneinfo import ZoneInfo

from .chat import ChatPipeline, serialize_message
from .config import DeskConfig
from .events import EventHub
from .games import DoodleGame, RpsGame
from .models import (
    AppKind,
    AppState,
    ChatState,
    ChatThread,
    GamesState,
    Point,
    ProfileState,
    RpsResult,
    RpsState,
    Score,
    WindowHandle,
    now,
)
from .profile_store import JsonFileStorage, ProfileStore, UserProfile
from .reply_client import HttpReplyClient, ReplyClient, ReplyOutcome
from .window_manager import WindowManager, default_state_factory

logger = logging.getLogger("vdesk.session")

S = TypeVar("S", ChatState, GamesState, ProfileState)


class DesktopSession:
    """One user's desktop: profile, windows, and the apps inside them.

    All mutations go through ``self._lock``. The lock is only ever held for
    synchronous work; the chat pipeline releases it while a reply is pending.
    """

    def __init__(
        self,
        config: DeskConfig,
        reply_client: Optional[ReplyClient] = None,
        events: Optional[EventHub] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = now,
    ) -> None:
        self.config = config
        self.events = events or EventHub(config.event_log_path)
        self._lock = asyncio.Lock()
        self._rng = rng or random.Random()

        self.profiles = ProfileStore(JsonFileStorage(config.storage_path))
        self.profiles.load()

        self.scoreboard = Score()
        self.windows = WindowManager(self._new_app_state, max_windows=config.max_windows)
        self.chat = ChatPipeline(
            reply_client or HttpReplyClient(config.reply),
            lock=self._lock,
            events=self.events,
            profiles=self.profiles,
            personas=config.contacts,
            timeout=config.reply.timeout_sec,
            clock=clock,
        )

    def _new_app_state(self, kind: AppKind) -> AppState:
        if kind is AppKind.games and self.config.rps_score_scope == "session":
            return GamesState(rps=RpsState(score=self.scoreboard))
        return default_state_factory(kind)

    # ----- Profile -----
    @property
    def profile(self) -> Optional[UserProfile]:
        return self.profiles.profile

    @property
    def is_onboarded(self) -> bool:
        return self.profiles.is_onboarded

    async def complete_onboarding(self, name: str, timezone: Optional[str] = None) -> UserProfile:
        async with self._lock:
            profile = self.profiles.complete_onboarding(name, timezone)
        await self.events.emit("profile.onboarded", profile.model_dump())
        return profile

    async def set_avatar(
        self,
        reference: Optional[str] = None,
        image: Optional[bytes] = None,
        window_id: Optional[str] = None,
    ) -> Optional[UserProfile]:
        if reference is None and image is None:
            return None
        async with self._lock:
            if not self.profiles.is_onboarded:
                return None
            if image is not None:
                reference = self.profiles.store_avatar_image(image)
            profile = self.profiles.set_avatar(reference)
            state = self._state(window_id, ProfileState) if window_id else None
            if state is not None:
                state.captures += 1
                state.last_capture_at = now()
        await self.events.emit("profile.avatar", {"avatar": reference})
        return profile

    async def logout(self) -> None:
        async with self._lock:
            closed = self.windows.close_all()
            self.profiles.clear()
            self.scoreboard.user = 0
            self.scoreboard.ai = 0
        for wid in closed:
            await self.events.emit("window.closed", {"id": wid})
        await self.events.emit("profile.cleared", {})

    def greeting(self) -> str:
        profile = self.profiles.profile
        return f"Welcome {profile.name if profile else 'Guest'}"

    def local_time(self, at: Optional[float] = None) -> datetime:
        profile = self.profiles.profile
        tz = ZoneInfo(profile.timezone if profile else "UTC")
        return datetime.fromtimestamp(now() if at is None else at, tz=tz)

    # ----- Windows -----
    async def open_window(self, kind: AppKind, title: Optional[str] = None) -> WindowHandle:
        async with self._lock:
            win = self.windows.open(kind, title)
        await self.events.emit("window.opened", serialize_window(win))
        return win

    async def close_window(self, win_id: str) -> bool:
        async with self._lock:
            closed = self.windows.close(win_id)
            focused = self.windows.focused()
        if closed:
            await self.events.emit("window.closed", {"id": win_id, "focused": focused.id if focused else None})
        return closed

    async def focus_window(self, win_id: str) -> Optional[WindowHandle]:
        async with self._lock:
            win = self.windows.focus(win_id)
        if win is not None:
            await self.events.emit("window.focused", serialize_window(win))
        return win

    async def move_window(self, win_id: str, x: int, y: int) -> Optional[WindowHandle]:
        async with self._lock:
            win = self.windows.move(win_id, x, y)
        if win is not None:
            await self.events.emit("window.moved", serialize_window(win))
        return win

    def list_windows(self) -> List[WindowHandle]:
        return self.windows.list()

    # ----- Chat -----
    async def send_chat(self, win_id: str, thread_id: str, text: str) -> Optional[ReplyOutcome]:
        chat = self._state(win_id, ChatState)
        if chat is None:
            return None
        return await self.chat.send(chat, thread_id, text, window_id=win_id)

    async def submit_chat(self, win_id: str, thread_id: str, text: str):
        chat = self._state(win_id, ChatState)
        if chat is None:
            return None
        return await self.chat.submit(chat, thread_id, text, window_id=win_id)

    def chat_thread(self, win_id: str, thread_id: str) -> Optional[ChatThread]:
        chat = self._state(win_id, ChatState)
        if chat is None:
            return None
        return chat.threads.get(thread_id) or ChatThread(contact=thread_id)

    # ----- Games -----
    async def play_rps(self, win_id: str, choice: str, ai_choice=None) -> Optional[Tuple[RpsResult, Dict[str, int]]]:
        """Play one round. Returns the result and the score right after it, or None."""
        async with self._lock:
            games = self._state(win_id, GamesState)
            if games is None:
                return None
            result = RpsGame(games.rps, rng=self._rng).resolve(choice, ai_choice)
            score = asdict(games.rps.score)
        await self.events.emit("rps.played", {"window_id": win_id, **serialize_rps_result(result), "score": score})
        return result, score

    async def reset_rps(self, win_id: str) -> bool:
        async with self._lock:
            games = self._state(win_id, GamesState)
            if games is None:
                return False
            RpsGame(games.rps, rng=self._rng).reset()
        await self.events.emit("rps.reset", {"window_id": win_id})
        return True

    async def doodle_start(self, win_id: str) -> Optional[str]:
        async with self._lock:
            games = self._state(win_id, GamesState)
            if games is None:
                return None
            word = DoodleGame(games.doodle, rng=self._rng).start_round()
        await self.events.emit("doodle.started", {"window_id": win_id})
        return word

    async def doodle_stroke(self, win_id: str, start: Point, end: Point) -> bool:
        async with self._lock:
            games = self._state(win_id, GamesState)
            if games is None:
                return False
            added = DoodleGame(games.doodle, rng=self._rng).add_stroke(start, end)
        if added:
            await self.events.emit("doodle.stroke", {"window_id": win_id, "start": list(start), "end": list(end)})
        return added

    async def doodle_clear(self, win_id: str) -> bool:
        async with self._lock:
            games = self._state(win_id, GamesState)
            if games is None:
                return False
            DoodleGame(games.doodle, rng=self._rng).clear()
        await self.events.emit("doodle.cleared", {"window_id": win_id})
        return True

    async def doodle_guess(self, win_id: str) -> Optional[str]:
        async with self._lock:
            games = self._state(win_id, GamesState)
            if games is None:
                return None
            result = DoodleGame(games.doodle, rng=self._rng).submit_guess()
        if result is not None:
            await self.events.emit("doodle.guessed", {"window_id": win_id, "result": result})
        return result

    # ----- Query -----
    def snapshot(self) -> Dict[str, Any]:
        profile = self.profiles.profile
        return {
            "onboarded": profile is not None,
            "greeting": self.greeting(),
            "profile": profile.model_dump() if profile else None,
            "windows": [self.serialize_window_with_state(w) for w in self.windows.list()],
            "scoreboard": asdict(self.scoreboard),
        }

    def serialize_window_with_state(self, w: WindowHandle) -> Dict[str, Any]:
        data = serialize_window(w)
        data["state"] = serialize_state(self.windows.state_of(w.id))
        return data

    # ----- Helpers -----
    def _state(self, win_id: Optional[str], kind: Type[S]) -> Optional[S]:
        state = self.windows.state_of(win_id) if win_id else None
        return state if isinstance(state, kind) else None


def serialize_window(w: WindowHandle) -> Dict[str, Any]:
    return {
        "id": w.id,
        "app_kind": w.app_kind.value,
        "title": w.title,
        "position": {"x": w.position.x, "y": w.position.y},
        "z": w.z,
        "focused": w.focused,
    }


def serialize_rps_result(r: RpsResult) -> Dict[str, Any]:
    return {"user_choice": r.user_choice.value, "ai_choice": r.ai_choice.value, "outcome": r.outcome.value}


def serialize_thread(t: ChatThread) -> Dict[str, Any]:
    return {
        "contact": t.contact,
        "typing": t.is_typing,
        "messages": [serialize_message(m) for m in t.messages],
    }


def serialize_state(state: Optional[AppState]) -> Optional[Dict[str, Any]]:
    if state is None:
        return None
    if isinstance(state, ChatState):
        return {"kind": "chat", "threads": {k: serialize_thread(t) for k, t in state.threads.items()}}
    if isinstance(state, GamesState):
        rps, doodle = state.rps, state.doodle
        return {
            "kind": "games",
            "rps": {
                "score": asdict(rps.score),
                "last_result": serialize_rps_result(rps.last_result) if rps.last_result else None,
            },
            "doodle": {
                "phase": doodle.phase.value,
                "target_word": doodle.target_word,
                "strokes": [{"start": list(s.start), "end": list(s.end)} for s in doodle.strokes],
                "guess_result": doodle.guess_result,
            },
        }
    if isinstance(state, ProfileState):
        return {"kind": "profile", "captures": state.captures, "last_capture_at": state.last_capture_at}
    raise TypeError(f"unknown app state {type(state).__name__}")
