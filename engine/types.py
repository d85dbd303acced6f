from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, TypeAlias

# Suit legend (cosmetic only, never used in scoring)
SUIT_MAP: Dict[str, str] = {
    "H": "Hearts",
    "D": "Diamonds",
    "C": "Clubs",
    "S": "Spades",
}

RANKS: List[str] = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]

RANK_VALUES: Dict[str, int] = {
    "A": 1,
    "2": 2,
    "3": 3,
    "4": 4,
    "5": -5,
    "6": 6,
    "7": 7,
    "8": 8,
    "9": 9,
    "10": 10,
    "J": 10,
    "Q": 10,
    "K": 0,
}

# Flat cell index 0..8, row-major (row * 3 + col)
GridPos = int
PlayerKind = Literal["H", "AI"]
Phase = Literal["dealing", "peeking", "turn", "roundEnd", "finished"]
DrawSource = Literal["pile", "discard"]
MoveKind = Literal["peek", "draw", "place"]

PendingKind: TypeAlias = Literal[
    "peek",
    "choose_source",
    "choose_pos",
]


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    @property
    def value(self) -> int:
        return RANK_VALUES[self.rank]

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"


def card_value(card: Card) -> int:
    return RANK_VALUES[card.rank]


@dataclass(frozen=True)
class Move:
    """One player action, identical for humans and the AI.

    - ``peek``: reveal ``pos`` during the peeking phase
    - ``draw``: take the top card of ``source``
    - ``place``: resolve the held card against ``pos``; ``keep`` swaps it in
    """

    kind: MoveKind
    pos: Optional[GridPos] = None
    source: Optional[DrawSource] = None
    keep: Optional[bool] = None


def peek(pos: GridPos) -> Move:
    return Move(kind="peek", pos=pos)


def draw(source: DrawSource) -> Move:
    return Move(kind="draw", source=source)


def place(pos: Optional[GridPos], keep: bool) -> Move:
    return Move(kind="place", pos=pos, keep=keep)


# Engine-driven pending action descriptor for external resolution
@dataclass
class PendingAction:
    kind: PendingKind
    playerId: str
    payload: Dict[str, Any]
    id: str  # unique id for correlation
