from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from engine import Move
from . import messages as m
from .connection import ConnState, ConnectionManager
from .messages import Room, RoomCard, RoomMember, RoomSettings

logger = logging.getLogger(__name__)

# Fields a directory card carries at top level that live under Room.settings
_CARD_SETTINGS = ("name", "visibility", "maxPlayers", "rounds", "bet", "betCoins")


def room_from_payload(obj: Mapping[str, Any]) -> Room:
    """Build a Room from either a full room object or a directory card."""
    data = dict(obj)
    if "settings" not in data:
        data["settings"] = {k: data[k] for k in _CARD_SETTINGS if k in data}
    if "members" not in data:
        data["members"] = data.get("participants") or data.get("players") or []
    return Room.model_validate(data)


class RoomDirectory:
    """Client cache of the public room list."""

    def __init__(self, conn: Optional[ConnectionManager] = None) -> None:
        self._conn = conn
        self._rooms: Optional[Dict[str, RoomCard]] = None
        self.subscribed = False
        self.server_ts: Optional[int] = None
        self._resubscribe: Optional[asyncio.Task[None]] = None

    @property
    def rooms(self) -> List[RoomCard]:
        return list(self._rooms.values()) if self._rooms is not None else []

    @property
    def has_snapshot(self) -> bool:
        return self._rooms is not None

    def get(self, code: str) -> Optional[RoomCard]:
        return None if self._rooms is None else self._rooms.get(code)

    async def subscribe(self) -> None:
        assert self._conn is not None, "RoomDirectory has no connection"
        self._conn.on(m.ROOM_LIST_SNAPSHOT, self.apply_snapshot)
        self._conn.on(m.ROOM_LIST_DIFF, self.apply_diff)
        self._conn.on_state(self._on_conn_state)
        self.subscribed = True
        await self._conn.subscribe_room_list()

    async def unsubscribe(self) -> None:
        assert self._conn is not None, "RoomDirectory has no connection"
        self._conn.off(m.ROOM_LIST_SNAPSHOT, self.apply_snapshot)
        self._conn.off(m.ROOM_LIST_DIFF, self.apply_diff)
        self.subscribed = False
        task, self._resubscribe = self._resubscribe, None
        if task is not None and not task.done():
            task.cancel()
        await self._conn.unsubscribe_room_list()

    def _on_conn_state(self, state: ConnState) -> None:
        if state != "reconnecting" or not self.subscribed or self._conn is None:
            return
        # The server forgets subscriptions with the channel; queue a fresh one
        # and ignore diffs until its snapshot arrives.
        self._rooms = None
        if self._resubscribe is None or self._resubscribe.done():
            self._resubscribe = asyncio.create_task(self._conn.subscribe_room_list())

    @staticmethod
    def _parse(obj: Any) -> Optional[RoomCard]:
        try:
            return RoomCard.model_validate(obj)
        except ValidationError as e:
            logger.warning(f"Dropping invalid room card: {e}")
            return None

    def apply_snapshot(self, message: m.Message) -> None:
        rooms: Dict[str, RoomCard] = {}
        for obj in message.get("rooms") or []:
            card = self._parse(obj)
            if card is not None:
                rooms[card.code] = card
        self._rooms = rooms
        self.server_ts = message.get("serverTs")

    def apply_diff(self, message: m.Message) -> None:
        if self._rooms is None:
            logger.debug("Room list diff before snapshot; dropped")
            return
        for key in ("added", "updated"):
            for obj in message.get(key) or []:
                card = self._parse(obj)
                if card is not None:
                    self._rooms[card.code] = card
        for code in message.get("removed") or []:
            self._rooms.pop(code, None)
        self.server_ts = message.get("serverTs", self.server_ts)


ErrorCallback = Callable[[m.Message], None]


class RoomSession:
    """Local projection of one room, fed by the connection's message stream."""

    TAGS = (
        m.ROOM_CREATED,
        m.ROOM_JOINED,
        m.ROOM_LEFT,
        m.ROOM_DELETED,
        m.PLAYER_JOINED,
        m.PLAYER_LEFT,
        m.PLAYER_READY,
        m.PLAYER_DISCONNECTED,
        m.PLAYER_RECONNECTED,
        m.HOST_CHANGED,
        m.SETTINGS_UPDATED,
        m.GAME_STARTED,
        m.GAME_STATE,
        m.GAME_MOVE,
        m.GAME_ENDED,
        m.ERROR,
    )

    def __init__(self, code: str, user_id: Optional[str] = None, on_error: Optional[ErrorCallback] = None) -> None:
        self.code = code
        self.user_id = user_id
        self.on_error = on_error
        self.room: Optional[Room] = None
        self.closed = False
        # Last authoritative game snapshot and the moves applied on top of it
        self.game: Optional[Dict[str, Any]] = None
        self.moves: List[Dict[str, Any]] = []
        self.final_scores: Optional[Dict[str, Any]] = None
        self.errors: List[str] = []
        self.awaiting_resync = False
        self._conn: Optional[ConnectionManager] = None
        self._handlers: Dict[str, Callable[[m.Message], None]] = {
            m.ROOM_CREATED: self._on_room,
            m.ROOM_JOINED: self._on_room,
            m.ROOM_LEFT: self._on_room_left,
            m.ROOM_DELETED: self._on_room_deleted,
            m.PLAYER_JOINED: self._on_player_joined,
            m.PLAYER_LEFT: self._on_player_left,
            m.PLAYER_READY: self._on_player_ready,
            m.PLAYER_DISCONNECTED: self._on_player_connection,
            m.PLAYER_RECONNECTED: self._on_player_connection,
            m.HOST_CHANGED: self._on_host_changed,
            m.SETTINGS_UPDATED: self._on_settings_updated,
            m.GAME_STARTED: self._on_game_started,
            m.GAME_STATE: self._on_game_state,
            m.GAME_MOVE: self._on_game_move,
            m.GAME_ENDED: self._on_game_ended,
            m.ERROR: self._on_error,
        }

    # --- wiring ---

    def attach(self, conn: ConnectionManager) -> None:
        self._conn = conn
        for tag in self.TAGS:
            conn.on(tag, self.handle)
        conn.on_state(self._on_conn_state)

    def detach(self) -> None:
        if self._conn is None:
            return
        for tag in self.TAGS:
            self._conn.off(tag, self.handle)
        self._conn = None

    def _on_conn_state(self, state: ConnState) -> None:
        if state == "reconnecting":
            # Nothing is replayed: wait for the next game:state before trusting moves
            self.awaiting_resync = True

    def handle(self, message: m.Message) -> None:
        tag = message.get("type")
        handler = self._handlers.get(str(tag))
        if handler is None:
            return
        code = message.get("code")
        if code is None and isinstance(message.get("room"), Mapping):
            code = message["room"].get("code")
        if code is not None and code != self.code:
            return
        handler(message)

    # --- room state ---

    @property
    def version(self) -> int:
        return self.room.version if self.room is not None else -1

    def _is_stale(self, message: m.Message) -> bool:
        incoming = message.get("version")
        return incoming is not None and int(incoming) < self.version

    def apply_room(self, room: Room) -> bool:
        if self.room is not None and room.version < self.room.version:
            logger.debug(f"Stale room {room.code} v{room.version} < v{self.room.version}; dropped")
            return False
        self.room = room
        self.closed = False
        return True

    def _apply_embedded_room(self, message: m.Message) -> None:
        obj = message.get("room")
        if not isinstance(obj, Mapping):
            return
        try:
            room = room_from_payload(obj)
        except ValidationError as e:
            logger.warning(f"Dropping invalid room payload in {message.get('type')}: {e}")
            return
        self.apply_room(room)

    def member(self, player_id: str) -> Optional[RoomMember]:
        if self.room is None:
            return None
        return next((p for p in self.room.members if p.id == player_id), None)

    def _on_room(self, message: m.Message) -> None:
        self._apply_embedded_room(message)

    def _on_room_left(self, message: m.Message) -> None:
        pid = message.get("playerId")
        if pid is not None and pid != self.user_id:
            self._remove_member(str(pid))
            return
        self.room = None
        self.game = None
        self.closed = True

    def _on_room_deleted(self, message: m.Message) -> None:
        self.room = None
        self.game = None
        self.moves = []
        self.closed = True

    def _on_player_joined(self, message: m.Message) -> None:
        self._apply_embedded_room(message)
        if self.room is None:
            return
        obj = message.get("player")
        if not isinstance(obj, Mapping):
            return
        try:
            joined = RoomMember.model_validate(obj)
        except ValidationError as e:
            logger.warning(f"Dropping invalid player payload: {e}")
            return
        members = [p for p in self.room.members if p.id != joined.id]
        members.append(joined)
        members.sort(key=lambda p: p.joinOrder)
        self.room.members = members

    def _remove_member(self, player_id: str) -> None:
        if self.room is None:
            return
        self.room.members = [p for p in self.room.members if p.id != player_id]

    def _on_player_left(self, message: m.Message) -> None:
        self._apply_embedded_room(message)
        pid = message.get("playerId")
        if pid is not None:
            self._remove_member(str(pid))

    def _on_player_ready(self, message: m.Message) -> None:
        self._apply_embedded_room(message)
        p = self.member(str(message.get("playerId")))
        if p is not None and "ready" in message:
            p.ready = bool(message["ready"])

    def _on_player_connection(self, message: m.Message) -> None:
        p = self.member(str(message.get("playerId")))
        if p is not None:
            p.connected = message.get("type") == m.PLAYER_RECONNECTED

    def _on_host_changed(self, message: m.Message) -> None:
        if self.room is None or self._is_stale(message):
            return
        host_id = message.get("hostId")
        self.room.hostId = host_id
        for p in self.room.members:
            p.isHost = p.id == host_id
        if message.get("version") is not None:
            self.room.version = int(message["version"])

    def _on_settings_updated(self, message: m.Message) -> None:
        if self.room is None or self._is_stale(message):
            return
        changes = message.get("settings") or {}
        current = self.room.settings.model_dump()
        if "betCoins" in changes:
            current.pop("bet")
        try:
            settings = RoomSettings.model_validate({**current, **changes})
        except ValidationError as e:
            logger.warning(f"Dropping invalid settings update: {e}")
            return
        self.room.settings = settings
        if message.get("version") is not None:
            self.room.version = int(message["version"])

    # --- game stream ---

    def _on_game_started(self, message: m.Message) -> None:
        if self.room is not None:
            self.room.state = "active"
        self.game = None
        self.moves = []
        self.final_scores = None

    def _on_game_state(self, message: m.Message) -> None:
        state = message.get("state")
        if not isinstance(state, dict):
            logger.warning("game:state without a state object; dropped")
            return
        # Full resynchronization point
        self.game = state
        self.moves = []
        self.awaiting_resync = False

    def _on_game_move(self, message: m.Message) -> None:
        if self.awaiting_resync:
            logger.debug("game:move while awaiting resync; dropped")
            return
        self.moves.append({k: v for k, v in message.items() if k != "type"})

    def _on_game_ended(self, message: m.Message) -> None:
        if self.room is not None:
            self.room.state = "finished"
        self.final_scores = message.get("scores") or message.get("finalScores") or {}

    def _on_error(self, message: m.Message) -> None:
        text = str(message.get("message", ""))
        self.errors.append(text)
        if self.on_error is not None:
            self.on_error(message)

    # --- outbound ---

    def _require_conn(self) -> ConnectionManager:
        assert self._conn is not None, "RoomSession is not attached to a connection"
        return self._conn

    async def join(self, password: Optional[str] = None) -> None:
        await self._require_conn().join_room(self.code, password)

    async def leave(self) -> None:
        await self._require_conn().leave_room(self.code)

    async def set_ready(self, ready: bool) -> None:
        await self._require_conn().set_ready(self.code, ready)

    async def update_settings(self, **changes: Any) -> None:
        # Carries the version this write was based on
        version = self.room.version if self.room is not None else None
        await self._require_conn().update_room_settings(self.code, changes, version=version)

    async def start_game(self) -> None:
        await self._require_conn().start_game(self.code)

    async def submit_move(self, move: Union[Move, Dict[str, Any]]) -> None:
        await self._require_conn().submit_move(self.code, move)
