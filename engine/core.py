from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, cast
import random

from .types import (
    Card,
    DrawSource,
    GridPos,
    Move,
    PendingAction,
    PendingKind,
    Phase,
    PlayerKind,
    RANKS,
    SUIT_MAP,
    draw,
    peek,
    place,
)
from .grid import Grid
from .deck import DECK_SIZE, deal, draw_top, max_players
from .errors import (
    GameError,
    IllegalMove,
    InvalidPlayerCount,
    ALREADY_DRAWN,
    BAD_POSITION,
    CELL_CLEARED,
    DISCARD_LOCKED,
    NOT_AN_IMPROVEMENT,
    NOT_YOUR_TURN,
    NOTHING_DRAWN,
    PEEK_LIMIT,
    WRONG_PHASE,
)
from . import ai


PEEKS_PER_PLAYER: int = 2
TieBreak = Literal["shared", "last_round"]


def _append_log(state: "GameState", msg: str) -> None:
    if state.logs is None:
        state.logs = []
    state.logs.append(msg)


def _top_discard(state: "GameState") -> Optional[Card]:
    return state.discard[-1] if state.discard else None


@dataclass
class Player:
    id: str           # "p0", "p1", ...
    name: str
    kind: PlayerKind  # Literal["H","AI"]
    grid: Grid
    connected: bool = True
    is_host: bool = False
    ready: bool = False
    round_score: int = 0
    total_score: int = 0
    peeks: int = 0


@dataclass
class GameConfig:
    players: List[Tuple[PlayerKind, str]]  # [(kind,name),... 2..5 seats]
    rounds: int = 9
    seed: Optional[int] = None
    tie_break: TieBreak = "shared"


@dataclass
class GameState:
    cfg: GameConfig
    players: List[Player]
    phase: Phase
    draw_pile: List[Card]
    discard: List[Card]
    current_idx: int = 0
    extra_turn: bool = False
    end_trigger_idx: Optional[int] = None
    final_lap_done: List[str] = field(default_factory=list)
    round_no: int = 1
    drawn: Optional[Card] = None
    drawn_from: Optional[DrawSource] = None
    logs: List[str] = field(default_factory=list)
    # Event system
    pending: List[PendingAction] = field(default_factory=list)
    _next_action_seq: int = 1
    rng: random.Random = field(default_factory=random.Random, repr=False)


def new_game(cfg: GameConfig, rng: Optional[random.Random] = None) -> GameState:
    n = len(cfg.players)
    if n < 2 or n > max_players():
        raise InvalidPlayerCount(f"Golf 9 needs 2..{max_players()} players, got {n}")
    if cfg.rounds < 1:
        raise GameError("At least one round is required", code="INVALID_CONFIG")
    state = GameState(
        cfg=cfg,
        players=[],
        phase="dealing",
        draw_pile=[],
        discard=[],
        rng=rng if rng is not None else random.Random(cfg.seed),
    )
    grids, discard, draw_pile = deal(n, state.rng)
    for i, (kind, name) in enumerate(cfg.players):
        state.players.append(Player(id=f"p{i}", name=name, kind=kind, grid=Grid(grids[i]), is_host=(i == 0)))
    _start_dealt_round(state, discard, draw_pile)
    return state


def _start_dealt_round(state: GameState, discard: List[Card], draw_pile: List[Card]) -> None:
    state.discard = discard
    state.draw_pile = draw_pile
    state.current_idx = 0
    state.extra_turn = False
    state.end_trigger_idx = None
    state.final_lap_done = []
    state.drawn = None
    state.drawn_from = None
    state.pending = []
    for p in state.players:
        p.round_score = 0
        p.peeks = 0
    _append_log(state, f"DEAL: round {state.round_no}; DISCARD: {_top_discard(state)}")
    state.phase = "peeking"


def start_next_round(state: GameState) -> None:
    if state.phase != "roundEnd":
        raise IllegalMove("Next round can only start after a round ended", code=WRONG_PHASE)
    state.round_no += 1
    state.phase = "dealing"
    grids, discard, draw_pile = deal(len(state.players), state.rng)
    for p, cards in zip(state.players, grids):
        p.grid = Grid(cards)
    _start_dealt_round(state, discard, draw_pile)


def _player(state: GameState) -> Player:
    return state.players[state.current_idx]


def _index_of(state: GameState, player_id: str) -> int:
    for i, p in enumerate(state.players):
        if p.id == player_id:
            return i
    raise IllegalMove(f"Unknown player {player_id}", code=NOT_YOUR_TURN)


def deck_census(state: GameState) -> List[Card]:
    """Every card owned by the state, including the one held mid-turn."""
    cards: List[Card] = list(state.draw_pile) + list(state.discard)
    for p in state.players:
        cards.extend(p.grid.cards())
    if state.drawn is not None:
        cards.append(state.drawn)
    return cards


def is_round_over(state: GameState) -> bool:
    return state.phase in ("roundEnd", "finished")


def is_game_over(state: GameState) -> bool:
    return state.phase == "finished"


# --- Move ingestion (single path for humans and AI) ---

def apply_move(state: GameState, player_id: str, move: Move) -> None:
    idx = _index_of(state, player_id)
    if move.kind == "peek":
        _apply_peek(state, idx, move.pos)
    elif move.kind == "draw":
        _apply_draw(state, idx, move.source)
    elif move.kind == "place":
        _apply_place(state, idx, move.pos, move.keep)
    else:
        raise IllegalMove(f"Unknown move kind {move.kind!r}")
    # Anything awaited before this move is now stale
    state.pending = []


def _check_pos(pos: Optional[GridPos]) -> GridPos:
    if not isinstance(pos, int) or isinstance(pos, bool) or pos < 0 or pos > 8:
        raise IllegalMove(f"Grid position must be 0..8, got {pos!r}", code=BAD_POSITION)
    return pos


def _apply_peek(state: GameState, idx: int, pos: Optional[GridPos]) -> None:
    if state.phase != "peeking":
        raise IllegalMove("Peeking is over", code=WRONG_PHASE)
    p = state.players[idx]
    pos = _check_pos(pos)
    if p.peeks >= PEEKS_PER_PLAYER:
        raise IllegalMove(f"{p.name} already peeked {PEEKS_PER_PLAYER} cards", code=PEEK_LIMIT)
    if p.grid[pos].revealed:
        raise IllegalMove(f"Cell {pos} is already revealed", code=BAD_POSITION)
    card = p.grid.reveal(pos)
    p.peeks += 1
    _append_log(state, f"PEEK: {p.id} {pos} -> {card}")
    _maybe_finish_peeking(state)


def _maybe_finish_peeking(state: GameState) -> None:
    if state.phase != "peeking":
        return
    if any(p.connected and p.peeks < PEEKS_PER_PLAYER for p in state.players):
        return
    state.phase = "turn"
    first = _first_connected(state, 0)
    state.current_idx = 0 if first is None else first
    _append_log(state, f"TURN: {_player(state).id}")


def _first_connected(state: GameState, start: int) -> Optional[int]:
    n = len(state.players)
    for k in range(n):
        i = (start + k) % n
        if state.players[i].connected:
            return i
    return None


def _require_turn(state: GameState, idx: int) -> Player:
    if state.phase != "turn":
        raise IllegalMove(f"No turns are played during {state.phase}", code=WRONG_PHASE)
    if idx != state.current_idx:
        raise IllegalMove(f"It is {_player(state).name}'s turn", code=NOT_YOUR_TURN)
    return state.players[idx]


def _apply_draw(state: GameState, idx: int, source: Optional[DrawSource]) -> None:
    p = _require_turn(state, idx)
    if state.drawn is not None:
        raise IllegalMove("A card is already held", code=ALREADY_DRAWN)
    if source == "discard":
        if state.extra_turn:
            raise IllegalMove("Extra turns must draw from the pile", code=DISCARD_LOCKED)
        if not state.discard:
            raise IllegalMove("Discard pile is empty", code=DISCARD_LOCKED)
        card = state.discard.pop()
    elif source == "pile":
        reshuffled = not state.draw_pile
        card = draw_top(state.draw_pile, state.discard, state.rng)
        if reshuffled:
            _append_log(state, f"RESHUFFLE: {len(state.draw_pile) + 1} cards")
    else:
        raise IllegalMove(f"Unknown draw source {source!r}")
    state.drawn = card
    state.drawn_from = source
    _append_log(state, f"DRAW: {p.id} {source}")


def _apply_place(state: GameState, idx: int, pos: Optional[GridPos], keep: Optional[bool]) -> None:
    p = _require_turn(state, idx)
    drawn = state.drawn
    if drawn is None:
        raise IllegalMove("Draw a card first", code=NOTHING_DRAWN)
    if not isinstance(keep, bool):
        raise IllegalMove("Placement must say whether the card is kept")
    g = p.grid

    if pos is None:
        # Only possible once every cell is cleared
        if keep or any(not cell.cleared for cell in g.cells):
            raise IllegalMove("A target cell is required", code=BAD_POSITION)
        state.discard.append(drawn)
        _append_log(state, f"DISCARD: {p.id} {drawn}")
        _finish_resolution(state, idx, changed_pos=None)
        return

    pos = _check_pos(pos)
    cell = g[pos]
    if cell.cleared:
        raise IllegalMove(f"Cell {pos} is cleared", code=CELL_CLEARED)
    if cell.revealed and keep and drawn.value >= cell.card.value:
        raise IllegalMove(
            f"{drawn} does not improve on {cell.card} at {pos}", code=NOT_AN_IMPROVEMENT
        )

    changed_pos: Optional[GridPos] = pos
    if keep:
        old = g.replace(pos, drawn)
        state.discard.append(old)
        _append_log(state, f"SWAP: {p.id} {pos} {drawn}; DISCARD: {old}")
    elif not cell.revealed:
        state.discard.append(drawn)
        g.reveal(pos)
        _append_log(state, f"REVEAL: {p.id} {pos} -> {cell.card}; DISCARD: {drawn}")
    else:
        state.discard.append(drawn)
        changed_pos = None
        _append_log(state, f"DISCARD: {p.id} {drawn}")
    _finish_resolution(state, idx, changed_pos)


def _finish_resolution(state: GameState, idx: int, changed_pos: Optional[GridPos]) -> None:
    p = state.players[idx]
    state.drawn = None
    state.drawn_from = None
    # The extra turn being played (if any) is consumed here
    state.extra_turn = False
    if changed_pos is not None:
        col = p.grid.resolve_column(changed_pos)
        if col is not None:
            state.extra_turn = True
            _append_log(state, f"CLEAR: {p.id} column {col}")
    newly_triggered = False
    if state.end_trigger_idx is None and p.grid.all_revealed():
        state.end_trigger_idx = idx
        newly_triggered = True
        _append_log(state, f"END_TRIGGER: {p.id}")
    _end_turn(state, newly_triggered)


def _end_turn(state: GameState, newly_triggered: bool) -> None:
    if state.extra_turn:
        _append_log(state, f"EXTRA_TURN: {_player(state).id}")
        return
    cur = _player(state)
    trigger = state.end_trigger_idx
    if trigger is not None and not newly_triggered and state.current_idx != trigger:
        if cur.id not in state.final_lap_done:
            state.final_lap_done.append(cur.id)
    _advance(state)


def _next_idx(state: GameState) -> Optional[int]:
    n = len(state.players)
    trigger = state.end_trigger_idx
    for k in range(1, n + 1):
        i = (state.current_idx + k) % n
        p = state.players[i]
        if not p.connected:
            continue
        if trigger is not None and (i == trigger or p.id in state.final_lap_done):
            continue
        return i
    return None


def _advance(state: GameState) -> None:
    nxt = _next_idx(state)
    if nxt is None:
        if state.end_trigger_idx is not None:
            _finish_round(state)
        return
    state.current_idx = nxt
    _append_log(state, f"TURN: {_player(state).id}")


def _finish_round(state: GameState) -> None:
    state.drawn = None
    state.drawn_from = None
    state.extra_turn = False
    parts: List[str] = []
    for p in state.players:
        p.grid.reveal_all()
        p.round_score = p.grid.score()
        p.total_score += p.round_score
        parts.append(f"{p.id}={p.round_score}")
    _append_log(state, f"ROUND_END: {state.round_no}; " + " ".join(parts))
    state.phase = "finished" if state.round_no >= state.cfg.rounds else "roundEnd"


def set_connected(state: GameState, player_id: str, connected: bool) -> None:
    idx = _index_of(state, player_id)
    p = state.players[idx]
    if p.connected == connected:
        return
    p.connected = connected
    _append_log(state, f"{'RECONNECT' if connected else 'DISCONNECT'}: {p.id}")
    if connected:
        return
    state.pending = [pa for pa in state.pending if pa.playerId != p.id]
    if state.phase == "peeking":
        _maybe_finish_peeking(state)
        return
    if state.phase == "turn" and idx == state.current_idx:
        if state.drawn is not None:
            state.discard.append(state.drawn)
            state.drawn = None
            state.drawn_from = None
        state.extra_turn = False
        if state.end_trigger_idx is not None and idx != state.end_trigger_idx:
            state.final_lap_done.append(p.id)
        _advance(state)


# --- Scoring and standings ---

def standings(state: GameState) -> List[Tuple[str, int]]:
    ranked = sorted(state.players, key=lambda p: (p.total_score, state.players.index(p)))
    return [(p.id, p.total_score) for p in ranked]


def winners(state: GameState) -> List[str]:
    best = min(p.total_score for p in state.players)
    tied = [p for p in state.players if p.total_score == best]
    if state.cfg.tie_break == "last_round" and len(tied) > 1:
        best_round = min(p.round_score for p in tied)
        tied = [p for p in tied if p.round_score == best_round]
    return [p.id for p in tied]


# --- Event system: step + resolve ---

def _next_id(state: GameState) -> str:
    i = state._next_action_seq
    state._next_action_seq += 1
    return f"a{i}"


def _push_pending(state: GameState, *, kind: PendingKind, player_id: str, payload: Dict[str, Any]) -> PendingAction:
    pa = PendingAction(kind=kind, playerId=player_id, payload=payload, id=_next_id(state))
    state.pending.append(pa)
    return pa


def step(state: GameState) -> None:
    """
    Play AI seats until either:
    - a human must act (a PendingAction describes what is awaited), OR
    - the round is over (no pending).
    """
    if state.pending:
        return
    while True:
        if state.phase == "peeking":
            for p in state.players:
                if p.kind == "AI" and p.connected and p.peeks < PEEKS_PER_PLAYER:
                    for pos in ai.select_ai_peek_cards(p, state.rng, PEEKS_PER_PLAYER - p.peeks):
                        apply_move(state, p.id, peek(pos))
            if state.phase == "peeking":
                for p in state.players:
                    if p.connected and p.peeks < PEEKS_PER_PLAYER:
                        _push_pending(state, kind="peek", player_id=p.id, payload={
                            "remaining": PEEKS_PER_PLAYER - p.peeks,
                            "hidden": p.grid.hidden_positions(),
                        })
                        return
                return
            continue
        if state.phase != "turn":
            return
        p = _player(state)
        if p.kind == "AI":
            if state.drawn is None:
                apply_move(state, p.id, ai.choose_draw(state, p))
            apply_move(state, p.id, ai.choose_placement(state, p, state.rng))
            continue
        if state.drawn is None:
            top = _top_discard(state)
            allowed = ["pile"] if (top is None or state.extra_turn) else ["discard", "pile"]
            _push_pending(state, kind="choose_source", player_id=p.id, payload={
                "allowed": allowed,
                "discardTop": _card_to_obj(top),
                "extraTurn": state.extra_turn,
            })
        else:
            _push_pending(state, kind="choose_pos", player_id=p.id, payload={
                "drawn": _card_to_obj(state.drawn),
                "from": state.drawn_from,
                "open": [i for i, cell in enumerate(p.grid.cells) if not cell.cleared],
            })
        return


def resolve(state: GameState, actionId: str, response: Mapping[str, Any]) -> None:
    """
    Consume a PendingAction by ID: turn the response into a Move, apply it
    through apply_move and continue progression (via step). An illegal
    response leaves the pending action in place so it can be re-prompted.
    """
    pa = next((a for a in state.pending if a.id == actionId), None)
    if pa is None:
        raise IllegalMove("Pending action not found")
    move: Move
    if pa.kind == "peek":
        move = peek(cast(int, response.get("pos")))
    elif pa.kind == "choose_source":
        move = draw(cast(DrawSource, response.get("source")))
    elif pa.kind == "choose_pos":
        move = place(cast(Optional[int], response.get("pos")), cast(bool, response.get("keep")))
    else:
        raise IllegalMove(f"Unknown pending kind {pa.kind!r}")
    apply_move(state, pa.playerId, move)
    step(state)


# --- JSON serialization (pure, no I/O) ---

def _card_to_obj(card: Optional[Card]) -> Optional[Dict[str, object]]:
    if card is None:
        return None
    return {"rank": card.rank, "suit": card.suit}


def _obj_to_card(obj: object) -> Card:
    assert isinstance(obj, dict), "Card must be an object"
    rank = obj.get("rank")
    suit = obj.get("suit")
    assert rank in RANKS, f"Unknown rank: {rank}"
    assert suit in SUIT_MAP, f"Unknown suit: {suit}"
    return Card(cast(str, rank), cast(str, suit))


def move_to_obj(move: Move) -> Dict[str, object]:
    obj: Dict[str, object] = {"kind": move.kind}
    if move.pos is not None:
        obj["pos"] = move.pos
    if move.source is not None:
        obj["source"] = move.source
    if move.keep is not None:
        obj["keep"] = move.keep
    return obj


def move_from_obj(obj: Mapping[str, Any]) -> Move:
    kind = obj.get("kind")
    if kind == "peek":
        return peek(cast(int, obj.get("pos")))
    if kind == "draw":
        return draw(cast(DrawSource, obj.get("source")))
    if kind == "place":
        return place(cast(Optional[int], obj.get("pos")), cast(bool, obj.get("keep")))
    raise IllegalMove(f"Unknown move kind {kind!r}")


def to_json(state: GameState, viewer_id: Optional[str] = None, full: bool = False) -> Dict[str, object]:
    """Snapshot as sent in ``game:state``.

    Hidden cells carry ``card: null`` unless ``full`` is set; the held card
    is only shown to the player holding it. ``full`` snapshots also carry
    both piles and can be loaded back with ``from_json``.
    """
    players_obj: List[Dict[str, object]] = []
    for p in state.players:
        cells: List[Dict[str, object]] = []
        for cell in p.grid.cells:
            show = full or cell.revealed
            cells.append({
                "card": _card_to_obj(cell.card) if show else None,
                "revealed": cell.revealed,
                "cleared": cell.cleared,
            })
        players_obj.append({
            "id": p.id,
            "name": p.name,
            "kind": p.kind,
            "connected": p.connected,
            "isHost": p.is_host,
            "ready": p.ready,
            "peeks": p.peeks,
            "roundScore": p.round_score,
            "totalScore": p.total_score,
            "grid": cells,
        })

    holder = _player(state).id if state.players else None
    show_drawn = full or (viewer_id is not None and viewer_id == holder)

    pendings: List[Dict[str, object]] = []
    for pa in state.pending:
        pendings.append({
            "id": pa.id,
            "kind": pa.kind,
            "playerId": pa.playerId,
            "payload": pa.payload,
        })

    data: Dict[str, object] = {
        "schemaVersion": 1,
        "config": {
            "rounds": state.cfg.rounds,
            "tieBreak": state.cfg.tie_break,
            "seed": state.cfg.seed,
        },
        "phase": state.phase,
        "round": state.round_no,
        "players": players_obj,
        "currentPlayerId": holder,
        "extraTurn": state.extra_turn,
        "endTriggerPlayerId": None if state.end_trigger_idx is None else state.players[state.end_trigger_idx].id,
        "finalLapDone": list(state.final_lap_done),
        "discardTop": _card_to_obj(_top_discard(state)),
        "discardCount": len(state.discard),
        "drawCount": len(state.draw_pile),
        "drawn": _card_to_obj(state.drawn) if show_drawn else None,
        "hasDrawn": state.drawn is not None,
        "drawnFrom": state.drawn_from,
        "logs": list(state.logs),
        "pending": pendings,
    }
    if full:
        data["drawPile"] = [_card_to_obj(c) for c in state.draw_pile]
        data["discard"] = [_card_to_obj(c) for c in state.discard]
    return data


def from_json(data: Mapping[str, Any]) -> GameState:
    # Basic validation
    assert isinstance(data, Mapping), "Data must be a dict"
    assert data.get("schemaVersion") == 1, "Unsupported schemaVersion"
    assert "drawPile" in data and "discard" in data, "Only full snapshots can be loaded"

    cfgd = data.get("config")
    assert isinstance(cfgd, Mapping), "Missing config"
    p_list = data.get("players")
    assert isinstance(p_list, list) and len(p_list) >= 2, "players list required"

    pl_cfg: List[Tuple[PlayerKind, str]] = []
    for pobj in p_list:
        kind = pobj.get("kind")
        name = pobj.get("name")
        assert kind in ("H", "AI"), "Invalid player kind"
        assert isinstance(name, str), "Invalid player name"
        pl_cfg.append((cast(PlayerKind, kind), name))

    seed = cfgd.get("seed")
    cfg = GameConfig(
        players=pl_cfg,
        rounds=int(cfgd.get("rounds", 9)),
        seed=None if seed is None else int(seed),
        tie_break=cast(TieBreak, cfgd.get("tieBreak", "shared")),
    )
    phase = data.get("phase")
    assert phase in ("dealing", "peeking", "turn", "roundEnd", "finished"), f"Invalid phase: {phase}"

    players: List[Player] = []
    for pobj in p_list:
        cells = pobj.get("grid")
        assert isinstance(cells, list) and len(cells) == 9, "Grid must have 9 cells"
        grid = Grid([_obj_to_card(cell.get("card")) for cell in cells])
        for cell, src in zip(grid.cells, cells):
            cell.revealed = bool(src.get("revealed", False))
            cell.cleared = bool(src.get("cleared", False))
        players.append(Player(
            id=str(pobj.get("id")),
            name=str(pobj.get("name")),
            kind=cast(PlayerKind, pobj.get("kind")),
            grid=grid,
            connected=bool(pobj.get("connected", True)),
            is_host=bool(pobj.get("isHost", False)),
            ready=bool(pobj.get("ready", False)),
            round_score=int(pobj.get("roundScore", 0)),
            total_score=int(pobj.get("totalScore", 0)),
            peeks=int(pobj.get("peeks", 0)),
        ))

    ids = [p.id for p in players]
    cpid = data.get("currentPlayerId")
    assert cpid in ids, "currentPlayerId not found in players"
    etpid = data.get("endTriggerPlayerId")
    drawn_obj = data.get("drawn")

    state = GameState(
        cfg=cfg,
        players=players,
        phase=cast(Phase, phase),
        draw_pile=[_obj_to_card(c) for c in data["drawPile"]],
        discard=[_obj_to_card(c) for c in data["discard"]],
        current_idx=ids.index(cast(str, cpid)),
        extra_turn=bool(data.get("extraTurn", False)),
        end_trigger_idx=ids.index(etpid) if etpid in ids else None,
        final_lap_done=[str(x) for x in data.get("finalLapDone", [])],
        round_no=int(data.get("round", 1)),
        drawn=None if drawn_obj is None else _obj_to_card(drawn_obj),
        drawn_from=cast(Optional[DrawSource], data.get("drawnFrom")),
        logs=[str(x) for x in data.get("logs", [])],
        rng=random.Random(cfg.seed),
    )
    assert len(deck_census(state)) == DECK_SIZE, "Snapshot does not hold a full deck"

    for itm in data.get("pending", []):
        if not isinstance(itm, Mapping):
            continue
        state.pending.append(PendingAction(
            kind=cast(PendingKind, str(itm.get("kind", ""))),
            playerId=str(itm.get("playerId", "")),
            payload=dict(itm.get("payload", {})),
            id=str(itm.get("id", "")),
        ))
    seqs = [int(pa.id[1:]) for pa in state.pending if pa.id[1:].isdigit()]
    state._next_action_seq = max(seqs, default=0) + 1
    return state
