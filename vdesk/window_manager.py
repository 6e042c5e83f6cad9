from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .errors import WindowLimitReached
from .models import (
    DEFAULT_TITLES,
    AppKind,
    AppState,
    ChatState,
    GamesState,
    Position,
    ProfileState,
    WindowHandle,
    new_id,
)

logger = logging.getLogger("vdesk.windows")

StateFactory = Callable[[AppKind], AppState]


def default_state_factory(kind: AppKind) -> AppState:
    if kind is AppKind.chat:
        return ChatState()
    if kind is AppKind.games:
        return GamesState()
    if kind is AppKind.profile:
        return ProfileState()
    raise ValueError(f"unknown app kind {kind!r}")


class WindowManager:
    """Open windows, their stacking order and their application state.

    Each handle owns exactly one state object, created fresh on ``open`` and
    dropped on ``close``. Focus always belongs to the topmost window.
    """

    def __init__(self, state_factory: StateFactory = default_state_factory, max_windows: Optional[int] = None) -> None:
        self._windows: Dict[str, WindowHandle] = {}
        self._states: Dict[str, AppState] = {}
        self._state_factory = state_factory
        self._next_z = 1
        self.max_windows = max_windows

    # ----- Lifecycle -----
    def open(self, kind: AppKind, title: Optional[str] = None) -> WindowHandle:
        kind = AppKind(kind)
        if self.max_windows is not None and len(self._windows) >= self.max_windows:
            raise WindowLimitReached(self.max_windows)
        n = len(self._windows)
        win = WindowHandle(
            id=new_id("win"),
            app_kind=kind,
            title=title or DEFAULT_TITLES[kind],
            position=Position(3 + n * 2, 2 + n),
            z=self._next_z,
            focused=True,
        )
        self._next_z += 1
        # unfocus others
        for w in self._windows.values():
            w.focused = False
        self._windows[win.id] = win
        self._states[win.id] = self._state_factory(kind)
        logger.info("opened %s window %s", kind.value, win.id)
        return win

    def close(self, win_id: str) -> bool:
        win = self._windows.pop(win_id, None)
        if win is None:
            return False
        self._states.pop(win_id, None)
        if win.focused:
            top = self._topmost()
            if top is not None:
                top.focused = True
        logger.info("closed window %s", win_id)
        return True

    def close_all(self) -> List[str]:
        ids = [w.id for w in self.list()]
        self._windows.clear()
        self._states.clear()
        return ids

    # ----- Focus / layout -----
    def focus(self, win_id: str) -> Optional[WindowHandle]:
        win = self._windows.get(win_id)
        if win is None:
            return None
        if not (win.focused and win.z == self._next_z - 1):
            win.z = self._next_z
            self._next_z += 1
        for w in self._windows.values():
            w.focused = w is win
        return win

    def move(self, win_id: str, x: int, y: int) -> Optional[WindowHandle]:
        win = self._windows.get(win_id)
        if win is None:
            return None
        win.position = Position(x, y)
        return win

    # ----- Query -----
    def list(self) -> List[WindowHandle]:
        return sorted(self._windows.values(), key=lambda w: w.z)

    def get(self, win_id: str) -> Optional[WindowHandle]:
        return self._windows.get(win_id)

    def state_of(self, win_id: str) -> Optional[AppState]:
        return self._states.get(win_id)

    def focused(self) -> Optional[WindowHandle]:
        for w in self._windows.values():
            if w.focused:
                return w
        return None

    def __len__(self) -> int:
        return len(self._windows)

    def _topmost(self) -> Optional[WindowHandle]:
        if not self._windows:
            return None
        return max(self._windows.values(), key=lambda w: w.z)
