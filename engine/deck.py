from __future__ import annotations

from typing import List, Tuple
import random

from .types import Card, RANKS, SUIT_MAP
from .errors import DeckExhausted


DECK_SIZE: int = len(RANKS) * len(SUIT_MAP)
GRID_SIZE: int = 9


def new_deck() -> List[Card]:
    return [Card(rank, suit) for suit in SUIT_MAP.keys() for rank in RANKS]


def shuffled_deck(rng: random.Random) -> List[Card]:
    deck = new_deck()
    rng.shuffle(deck)
    return deck


def max_players() -> int:
    # Every grid plus the initial discard must come out of one deck
    return (DECK_SIZE - 1) // GRID_SIZE


def deal(n_players: int, rng: random.Random) -> Tuple[List[List[Card]], List[Card], List[Card]]:
    """Return (grids, discard, draw_pile) for a fresh round.

    Cards are dealt in cell order, player after player, then one card goes
    face up to the discard pile and the remainder forms the draw pile.
    """
    deck = shuffled_deck(rng)
    grids: List[List[Card]] = []
    idx = 0
    for _ in range(n_players):
        grids.append(deck[idx:idx + GRID_SIZE])
        idx += GRID_SIZE
    discard = [deck[idx]]
    draw_pile = deck[idx + 1:]
    return grids, discard, draw_pile


def reshuffle_discard(draw_pile: List[Card], discard: List[Card], rng: random.Random) -> None:
    # Keeps the top discard aside, everything under it becomes the new pile
    if draw_pile:
        return
    if len(discard) <= 1:
        raise DeckExhausted("Draw pile and discard pile are both exhausted")
    top = discard[-1]
    rest = discard[:-1]
    rng.shuffle(rest)
    draw_pile.extend(rest)
    discard[:] = [top]


def draw_top(draw_pile: List[Card], discard: List[Card], rng: random.Random) -> Card:
    if not draw_pile:
        reshuffle_discard(draw_pile, discard, rng)
    return draw_pile.pop()
