from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
import json

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# Outbound tags
AUTH = "auth"
ROOM_CREATE = "room:create"
ROOM_JOIN = "room:join"
ROOM_LEAVE = "room:leave"
ROOM_LIST_SUBSCRIBE = "room:list:subscribe"
ROOM_LIST_UNSUBSCRIBE = "room:list:unsubscribe"
ROOM_SETTINGS_UPDATE = "room:settings:update"
ROOM_READY_SET = "room:ready:set"
GAME_START = "game:start"
MOVE_SUBMIT = "move:submit"
SESSION_PING = "session:ping"

# Inbound tags
CONNECTED = "connected"
AUTHENTICATED = "authenticated"
ERROR = "error"
ROOM_CREATED = "room:created"
ROOM_JOINED = "room:joined"
ROOM_LEFT = "room:left"
ROOM_DELETED = "room:deleted"
ROOM_LIST_SNAPSHOT = "room:list:snapshot"
ROOM_LIST_DIFF = "room:list:diff"
PLAYER_JOINED = "player:joined"
PLAYER_LEFT = "player:left"
PLAYER_READY = "player:ready"
PLAYER_DISCONNECTED = "player:disconnected"
PLAYER_RECONNECTED = "player:reconnected"
HOST_CHANGED = "host:changed"
SETTINGS_UPDATED = "settings:updated"
GAME_STARTED = "game:started"
GAME_STATE = "game:state"
GAME_MOVE = "game:move"
GAME_ENDED = "game:ended"
SESSION_PONG = "session:pong"

Message = Dict[str, Any]


class MalformedMessage(ValueError):
    pass


def make(tag: str, **fields: Any) -> Message:
    msg: Message = {"type": tag}
    msg.update({k: v for k, v in fields.items() if v is not None})
    return msg


def encode(message: Message) -> str:
    return json.dumps(message, separators=(",", ":"))


def decode(raw: str | bytes) -> Message:
    """Parse one text frame; anything that is not ``{"type": str, ...}`` is malformed."""
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"not JSON: {e}") from e
    if not isinstance(obj, dict) or not isinstance(obj.get("type"), str):
        raise MalformedMessage("frame has no string 'type'")
    return obj


# --- Room payloads ---

Visibility = Literal["public", "private"]
RoomStatus = Literal["waiting", "active", "finished"]


class RoomSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = ""
    visibility: Visibility = "public"
    maxPlayers: int = Field(4, ge=2, le=5)
    rounds: int = Field(9, ge=1)
    bet: int = Field(0, ge=0, validation_alias=AliasChoices("bet", "betCoins"))


class RoomMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    isHost: bool = False
    ready: bool = False
    connected: bool = True
    joinOrder: int = 0


class Room(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    settings: RoomSettings = Field(default_factory=RoomSettings)
    members: List[RoomMember] = Field(default_factory=list)
    state: RoomStatus = "waiting"
    version: int = Field(0, ge=0)
    hostId: Optional[str] = None


class RoomCard(BaseModel):
    """Directory entry as listed in ``room:list:*`` messages."""

    model_config = ConfigDict(extra="ignore")

    code: str
    name: str = ""
    visibility: Visibility = "public"
    isLocked: bool = False
    hostName: str = ""
    playerCount: int = 0
    maxPlayers: int = 4
    rounds: int = 9
    betCoins: int = 0
    state: RoomStatus = "waiting"
