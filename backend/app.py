from __future__ import annotations

from typing import Any, Dict, List, NoReturn, Optional, Tuple
import logging
import uuid

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from backend.models import (
    ConnectionReq,
    GetStateResp,
    MoveReq,
    NewGameReq,
    NextRoundReq,
    ResolveReq,
    StateEnvelope,
    StepReq,
)

from engine import (
    DeckExhausted,
    GameConfig,
    GameError,
    GameState,
    PlayerKind,
    apply_move,
    move_from_obj,
    new_game,
    resolve as engine_resolve,
    set_connected,
    start_next_round,
    step as engine_step,
    to_json,
)

logger = logging.getLogger(__name__)

# In-memory session store
SESSIONS: Dict[str, GameState] = {}


def _new_session_id() -> str:
    return uuid.uuid4().hex


def get_state(session_id: str) -> GameState:
    state = SESSIONS.get(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return state


def save_state(session_id: str, state: GameState) -> None:
    SESSIONS[session_id] = state


def _raise_game_error(e: GameError, session_id: Optional[str] = None) -> NoReturn:
    if isinstance(e, DeckExhausted):
        # Fatal for the round: the session is dropped
        logger.error(f"Deck exhausted, aborting session {session_id}: {e.message}")
        if session_id is not None:
            SESSIONS.pop(session_id, None)
        raise HTTPException(status_code=500, detail={"code": e.code, "message": e.message})
    raise HTTPException(status_code=400, detail={"code": e.code, "message": e.message})


def _validate_response_payload(payload: Dict[str, Any]) -> None:
    # Shape guards only; the engine decides legality
    if "pos" in payload:
        pos = payload.get("pos")
        if pos is not None and (not isinstance(pos, int) or isinstance(pos, bool) or pos < 0 or pos > 8):
            raise HTTPException(status_code=422, detail="pos must be 0..8")
    if "source" in payload and payload.get("source") not in ("pile", "discard"):
        raise HTTPException(status_code=422, detail="source must be 'pile' or 'discard'")
    if "keep" in payload and not isinstance(payload.get("keep"), bool):
        raise HTTPException(status_code=422, detail="keep must be a boolean")


app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, bool]:
    return {"ok": True}


@app.post("/new-game", response_model=StateEnvelope)
def new_game_endpoint(req: NewGameReq) -> StateEnvelope:
    players_cfg: List[Tuple[PlayerKind, str]] = [(p.kind, p.name) for p in req.players]
    cfg = GameConfig(players=players_cfg, rounds=req.rounds, seed=req.seed, tie_break=req.tieBreak)
    try:
        state = new_game(cfg)
        # Play AI peeks and publish the first pending action
        engine_step(state)
    except GameError as e:
        _raise_game_error(e)
    sid = _new_session_id()
    save_state(sid, state)
    return StateEnvelope(sessionId=sid, state=to_json(state))


@app.get("/state/{sessionId}", response_model=GetStateResp)
def get_state_endpoint(sessionId: str, viewer: Optional[str] = None) -> GetStateResp:
    state = get_state(sessionId)
    return GetStateResp(state=to_json(state, viewer_id=viewer))


@app.post("/step", response_model=GetStateResp)
def step_endpoint(req: StepReq) -> GetStateResp:
    state = get_state(req.sessionId)
    try:
        engine_step(state)
    except GameError as e:
        _raise_game_error(e, req.sessionId)
    save_state(req.sessionId, state)
    return GetStateResp(state=to_json(state))


@app.post("/move", response_model=GetStateResp)
def move_endpoint(req: MoveReq) -> GetStateResp:
    state = get_state(req.sessionId)
    try:
        move = move_from_obj(req.move.model_dump())
        apply_move(state, req.playerId, move)
        engine_step(state)
    except GameError as e:
        _raise_game_error(e, req.sessionId)
    save_state(req.sessionId, state)
    return GetStateResp(state=to_json(state, viewer_id=req.playerId))


@app.post("/resolve", response_model=GetStateResp)
def resolve_endpoint(req: ResolveReq) -> GetStateResp:
    state = get_state(req.sessionId)
    _validate_response_payload(req.response)
    try:
        engine_resolve(state, req.actionId, req.response)
    except GameError as e:
        _raise_game_error(e, req.sessionId)
    save_state(req.sessionId, state)
    return GetStateResp(state=to_json(state))


@app.post("/connection", response_model=GetStateResp)
def connection_endpoint(req: ConnectionReq) -> GetStateResp:
    state = get_state(req.sessionId)
    try:
        set_connected(state, req.playerId, req.connected)
        engine_step(state)
    except GameError as e:
        _raise_game_error(e, req.sessionId)
    save_state(req.sessionId, state)
    return GetStateResp(state=to_json(state))


@app.post("/next-round", response_model=GetStateResp)
def next_round_endpoint(req: NextRoundReq) -> GetStateResp:
    state = get_state(req.sessionId)
    try:
        start_next_round(state)
        engine_step(state)
    except GameError as e:
        _raise_game_error(e, req.sessionId)
    save_state(req.sessionId, state)
    return GetStateResp(state=to_json(state))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.app:app", host="0.0.0.0", port=8000, reload=True)
