from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional
import random

from .types import Card, DrawSource, GridPos, Move, draw, place

if TYPE_CHECKING:
    from .core import GameState, Player


# Discard tops at or below this value are worth taking (A, K, 5 and the -5 itself)
GOOD_DISCARD_MAX: int = 1
GOOD_DRAW_MAX: int = 4


@dataclass
class AIDecision:
    source: DrawSource
    grid_position: Optional[GridPos] = None
    keep_drawn: Optional[bool] = None


def _is_very_good(value: int) -> bool:
    return value <= GOOD_DISCARD_MAX or value == -5


def find_best_grid_position(player: "Player", card_value: int) -> GridPos:
    """Index of the worst revealed cell the card improves, or -1.

    Falls back to the first hidden cell when the card is very good.
    """
    best_pos = -1
    worst_value = card_value
    for i, cell in enumerate(player.grid.cells):
        if not cell.revealed or cell.cleared:
            continue
        current = cell.card.value
        if current > card_value and current > worst_value:
            worst_value = current
            best_pos = i
    if best_pos == -1 and _is_very_good(card_value):
        for i, cell in enumerate(player.grid.cells):
            if not cell.revealed:
                best_pos = i
                break
    return best_pos


def make_ai_decision(state: "GameState", player: "Player") -> AIDecision:
    # The discard top may not be taken again during an extra turn
    if state.extra_turn:
        return AIDecision(source="pile")
    top = state.discard[-1] if state.discard else None
    if top is None:
        return AIDecision(source="pile")
    top_value = top.value
    if _is_very_good(top_value):
        pos = find_best_grid_position(player, top_value)
        if pos != -1:
            return AIDecision(source="discard", grid_position=pos, keep_drawn=True)
    return AIDecision(source="pile")


def make_ai_placement_decision(player: "Player", drawn: Card, pos: GridPos) -> bool:
    drawn_value = drawn.value
    cell = player.grid[pos]
    if not cell.revealed:
        # King, Ace and Five are always kept
        if drawn_value in (0, 1, -5):
            return True
        return drawn_value <= GOOD_DRAW_MAX
    return drawn_value < cell.card.value


def select_ai_grid_position(player: "Player", drawn: Card, rng: random.Random) -> GridPos:
    drawn_value = drawn.value
    best_pos = -1
    worst_value = drawn_value
    for i, cell in enumerate(player.grid.cells):
        if not cell.revealed or cell.cleared:
            continue
        current = cell.card.value
        if drawn_value < current and current > worst_value:
            worst_value = current
            best_pos = i
    if best_pos != -1:
        return best_pos

    if drawn_value <= GOOD_DRAW_MAX or drawn_value in (-5, 0):
        hidden = player.grid.hidden_positions()
        if hidden:
            return rng.choice(hidden)

    open_cells = [i for i, cell in enumerate(player.grid.cells) if not cell.cleared]
    if not open_cells:
        return -1
    return rng.choice(open_cells)


def select_ai_peek_cards(player: "Player", rng: random.Random, count: int = 2) -> List[GridPos]:
    available = player.grid.hidden_positions()
    return rng.sample(available, min(count, len(available)))


# --- Move builders used by the engine driver ---

def choose_draw(state: "GameState", player: "Player") -> Move:
    return draw(make_ai_decision(state, player).source)


def choose_placement(state: "GameState", player: "Player", rng: random.Random) -> Move:
    drawn = state.drawn
    assert drawn is not None, "AI placement needs a held card"
    if state.drawn_from == "discard":
        # Only taken when a target already exists
        pos = find_best_grid_position(player, drawn.value)
        if pos != -1:
            return place(pos, True)
    pos = select_ai_grid_position(player, drawn, rng)
    if pos == -1:
        return place(None, False)
    return place(pos, make_ai_placement_decision(player, drawn, pos))
