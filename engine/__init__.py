from .types import Card, GridPos, Move, PlayerKind, RANKS, SUIT_MAP, card_value, peek, draw, place
from .errors import GameError, IllegalMove, InvalidPlayerCount, DeckExhausted
from .deck import new_deck, deal
from .grid import Grid, GridCell
from .ai import (
    AIDecision,
    find_best_grid_position,
    make_ai_decision,
    make_ai_placement_decision,
    select_ai_grid_position,
    select_ai_peek_cards,
)
from .core import (
    Player,
    GameConfig,
    GameState,
    to_json,
    from_json,
    move_to_obj,
    move_from_obj,
    new_game,
    start_next_round,
    apply_move,
    set_connected,
    step,
    resolve,
    deck_census,
    standings,
    winners,
    is_round_over,
    is_game_over,
)

__all__ = [
    "Card",
    "GridPos",
    "Move",
    "PlayerKind",
    "RANKS",
    "SUIT_MAP",
    "card_value",
    "peek",
    "draw",
    "place",
    "GameError",
    "IllegalMove",
    "InvalidPlayerCount",
    "DeckExhausted",
    "new_deck",
    "deal",
    "Grid",
    "GridCell",
    "AIDecision",
    "find_best_grid_position",
    "make_ai_decision",
    "make_ai_placement_decision",
    "select_ai_grid_position",
    "select_ai_peek_cards",
    "Player",
    "GameConfig",
    "GameState",
    "to_json",
    "from_json",
    "move_to_obj",
    "move_from_obj",
    "new_game",
    "start_next_round",
    "apply_move",
    "set_connected",
    "step",
    "resolve",
    "deck_census",
    "standings",
    "winners",
    "is_round_over",
    "is_game_over",
]
