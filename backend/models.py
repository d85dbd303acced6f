from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


Source = Literal["pile", "discard"]


class PlayerSpec(BaseModel):
    kind: Literal["H", "AI"]
    name: str = Field(..., min_length=1)


class NewGameReq(BaseModel):
    players: List[PlayerSpec]
    rounds: int = Field(9, ge=1)
    seed: Optional[int] = None
    tieBreak: Literal["shared", "last_round"] = "shared"


class MoveObj(BaseModel):
    kind: Literal["peek", "draw", "place"]
    pos: Optional[int] = Field(None, ge=0, le=8)
    source: Optional[Source] = None
    keep: Optional[bool] = None


class StepReq(BaseModel):
    sessionId: str


class NextRoundReq(BaseModel):
    sessionId: str


class MoveReq(BaseModel):
    sessionId: str
    playerId: str
    move: MoveObj


class ResolveReq(BaseModel):
    sessionId: str
    actionId: str
    response: Dict[str, Any]


class ConnectionReq(BaseModel):
    sessionId: str
    playerId: str
    connected: bool


class GetStateResp(BaseModel):
    state: Dict[str, Any]


class StateEnvelope(BaseModel):
    sessionId: str
    state: Dict[str, Any]
