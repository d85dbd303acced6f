import pytest

from engine import (
    DeckExhausted,
    GameConfig,
    apply_move,
    deck_census,
    draw,
    new_game,
    peek,
    place,
    set_connected,
    step,
)


def place_first_hidden(state, idx):
    return place(state.players[idx].grid.hidden_positions()[0], False)


def test_empty_pile_is_rebuilt_from_discard_minus_top(started_game):
    state = started_game()
    # Move the whole pile under the current discard top
    state.discard = state.draw_pile + state.discard
    state.draw_pile = []
    top = state.discard[-1]
    under = sorted(state.discard[:-1], key=str)

    apply_move(state, "p0", draw("pile"))
    assert state.discard == [top]
    assert len(deck_census(state)) == 52
    assert sorted(state.draw_pile + [state.drawn], key=str) == under
    assert any(ln.startswith("RESHUFFLE") for ln in state.logs)


def test_exhausted_deck_is_fatal(started_game):
    state = started_game()
    state.draw_pile = []
    state.discard = state.discard[-1:]
    logs = list(state.logs)
    with pytest.raises(DeckExhausted) as exc:
        apply_move(state, "p0", draw("pile"))
    assert exc.value.code == "DECK_EXHAUSTED"
    assert state.drawn is None
    # A failed draw leaves no trace in the log
    assert state.logs == logs


def test_current_player_disconnecting_returns_held_card(started_game):
    state = started_game(players=(("H", "P0"), ("H", "P1"), ("H", "P2")))
    apply_move(state, "p0", draw("pile"))
    held = state.drawn
    set_connected(state, "p0", False)
    assert state.drawn is None
    assert state.discard[-1] == held
    assert state.current_idx == 1
    assert len(deck_census(state)) == 52
    assert "DISCONNECT: p0" in state.logs


def test_disconnected_seat_is_skipped_until_reconnect(started_game):
    state = started_game(players=(("H", "P0"), ("H", "P1"), ("H", "P2")))
    set_connected(state, "p1", False)
    apply_move(state, "p0", draw("pile"))
    apply_move(state, "p0", place_first_hidden(state, 0))
    assert state.current_idx == 2
    set_connected(state, "p1", True)
    apply_move(state, "p2", draw("pile"))
    apply_move(state, "p2", place_first_hidden(state, 2))
    assert state.current_idx == 0
    apply_move(state, "p0", draw("pile"))
    apply_move(state, "p0", place_first_hidden(state, 0))
    assert state.current_idx == 1


def test_peeking_completes_without_disconnected_players():
    state = new_game(GameConfig(players=[("H", "A"), ("H", "B"), ("H", "C")], seed=5))
    set_connected(state, "p0", False)
    for pid in ("p1", "p2"):
        apply_move(state, pid, peek(0))
        apply_move(state, pid, peek(1))
    assert state.phase == "turn"
    assert state.current_idx == 1
    step(state)
    assert state.pending[0].playerId == "p1"
