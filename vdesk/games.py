"""Mini-game state machines: Rock-Paper-Scissors and Doodle-Guess."""

from __future__ import annotations

import logging
import random
from typing import Optional, Sequence, Union

from .models import (
    DoodlePhase,
    DoodleState,
    Point,
    RpsChoice,
    RpsOutcome,
    RpsResult,
    RpsState,
    Score,
    Stroke,
)

logger = logging.getLogger("vdesk.games")

# choice -> the choice it beats
BEATS = {
    RpsChoice.rock: RpsChoice.scissors,
    RpsChoice.scissors: RpsChoice.paper,
    RpsChoice.paper: RpsChoice.rock,
}

DOODLE_WORDS = (
    "cat",
    "house",
    "tree",
    "sun",
    "car",
    "fish",
    "flower",
    "boat",
    "star",
    "apple",
)


def outcome_for(user_choice: RpsChoice, ai_choice: RpsChoice) -> RpsOutcome:
    if user_choice == ai_choice:
        return RpsOutcome.tie
    if BEATS[user_choice] == ai_choice:
        return RpsOutcome.win
    return RpsOutcome.lose


def parse_choice(value: Union[str, RpsChoice]) -> RpsChoice:
    try:
        return RpsChoice(value)
    except ValueError:
        raise ValueError(f"unknown choice {value!r}; expected rock, paper or scissors")


class RpsGame:
    """Rock-Paper-Scissors bound to one window's state.

    With session-scoped scoring the state's ``score`` is the session
    scoreboard, so every games window adds to the same tally.
    """

    def __init__(self, state: RpsState, rng: Optional[random.Random] = None) -> None:
        self.state = state
        self._rng = rng or random.Random()

    @property
    def score(self) -> Score:
        return self.state.score

    def resolve(self, user_choice: Union[str, RpsChoice], ai_choice: Optional[RpsChoice] = None) -> RpsResult:
        user = parse_choice(user_choice)
        ai = ai_choice if ai_choice is not None else self._rng.choice(list(RpsChoice))
        result = RpsResult(user_choice=user, ai_choice=ai, outcome=outcome_for(user, ai))
        if result.outcome is RpsOutcome.win:
            self.state.score.user += 1
        elif result.outcome is RpsOutcome.lose:
            self.state.score.ai += 1
        self.state.last_result = result
        logger.debug("rps %s vs %s -> %s", user.value, ai.value, result.outcome.value)
        return result

    def reset(self) -> None:
        self.state.last_result = None


class DoodleGame:
    def __init__(self, state: DoodleState, words: Sequence[str] = DOODLE_WORDS, rng: Optional[random.Random] = None) -> None:
        if not words:
            raise ValueError("doodle word list must not be empty")
        self.state = state
        self.words = tuple(words)
        self._rng = rng or random.Random()

    def start_round(self) -> str:
        self.state.target_word = self._rng.choice(self.words)
        self.state.strokes = []
        self.state.guess_result = None
        self.state.phase = DoodlePhase.drawing
        return self.state.target_word

    def add_stroke(self, start: Point, end: Point) -> bool:
        if self.state.phase is not DoodlePhase.drawing:
            return False
        self.state.strokes.append(Stroke(start=tuple(start), end=tuple(end)))
        return True

    def clear(self) -> None:
        self.state.strokes = []

    def submit_guess(self) -> Optional[str]:
        """Report the round's guess.

        No recognition is performed on the strokes: every submitted round
        is reported as correctly guessed.
        """
        if self.state.phase is not DoodlePhase.drawing:
            return None
        self.state.phase = DoodlePhase.guessing
        self.state.guess_result = f"I guessed it! It's a {self.state.target_word}."
        self.state.phase = DoodlePhase.idle
        return self.state.guess_result
