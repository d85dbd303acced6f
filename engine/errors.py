from __future__ import annotations


class GameError(Exception):
    """Base exception for rule violations raised by the engine."""

    code = "GAME_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class InvalidPlayerCount(GameError):
    code = "INVALID_PLAYER_COUNT"


class IllegalMove(GameError):
    """Rejected action; the state is left untouched."""

    code = "ILLEGAL_MOVE"


class DeckExhausted(GameError):
    """Both piles are empty. Breaks card conservation, the round must be aborted."""

    code = "DECK_EXHAUSTED"


# Finer codes carried by IllegalMove
NOT_YOUR_TURN = "NOT_YOUR_TURN"
WRONG_PHASE = "WRONG_PHASE"
CELL_CLEARED = "CELL_CLEARED"
NOT_AN_IMPROVEMENT = "NOT_AN_IMPROVEMENT"
ALREADY_DRAWN = "ALREADY_DRAWN"
NOTHING_DRAWN = "NOTHING_DRAWN"
DISCARD_LOCKED = "DISCARD_LOCKED"
PEEK_LIMIT = "PEEK_LIMIT"
BAD_POSITION = "BAD_POSITION"
