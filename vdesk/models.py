from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union


class AppKind(str, enum.Enum):
    chat = "chat"
    games = "games"
    profile = "profile"


# Labels of the desktop launcher buttons.
DEFAULT_TITLES: Dict[AppKind, str] = {
    AppKind.chat: "Messages",
    AppKind.games: "Mini Games",
    AppKind.profile: "Profile",
}


@dataclass
class Position:
    x: int
    y: int


@dataclass
class WindowHandle:
    id: str
    app_kind: AppKind
    title: str
    position: Position
    z: int = 0
    focused: bool = False


# ----- Chat -----

class Role(str, enum.Enum):
    user = "user"
    assistant = "assistant"


@dataclass
class Message:
    id: str
    role: Role
    content: str
    timestamp: float
    fallback: bool = False


@dataclass
class ChatThread:
    contact: str
    messages: List[Message] = field(default_factory=list)
    pending: bool = False

    @property
    def is_typing(self) -> bool:
        return self.pending

    def history(self) -> List[Dict[str, str]]:
        return [{"role": m.role.value, "content": m.content} for m in self.messages]


@dataclass
class ChatState:
    threads: Dict[str, ChatThread] = field(default_factory=dict)

    def thread(self, contact: str) -> ChatThread:
        t = self.threads.get(contact)
        if t is None:
            t = ChatThread(contact=contact)
            self.threads[contact] = t
        return t


# ----- Games -----

class RpsChoice(str, enum.Enum):
    rock = "rock"
    paper = "paper"
    scissors = "scissors"


class RpsOutcome(str, enum.Enum):
    win = "win"
    lose = "lose"
    tie = "tie"


@dataclass
class Score:
    user: int = 0
    ai: int = 0


@dataclass
class RpsResult:
    user_choice: RpsChoice
    ai_choice: RpsChoice
    outcome: RpsOutcome


@dataclass
class RpsState:
    score: Score = field(default_factory=Score)
    last_result: Optional[RpsResult] = None


class DoodlePhase(str, enum.Enum):
    idle = "idle"
    drawing = "drawing"
    guessing = "guessing"


Point = Tuple[float, float]


@dataclass
class Stroke:
    start: Point
    end: Point


@dataclass
class DoodleState:
    phase: DoodlePhase = DoodlePhase.idle
    target_word: str = ""
    strokes: List[Stroke] = field(default_factory=list)
    guess_result: Optional[str] = None


@dataclass
class GamesState:
    rps: RpsState = field(default_factory=RpsState)
    doodle: DoodleState = field(default_factory=DoodleState)


@dataclass
class ProfileState:
    captures: int = 0
    last_capture_at: Optional[float] = None


AppState = Union[ChatState, GamesState, ProfileState]


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def now() -> float:
    return time.time()
