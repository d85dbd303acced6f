"""
Persistent channel to the rooms server: handshake, heartbeat, outbound
queue, reconnection with linear backoff and per-tag listener fan-out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Literal,
    Optional,
    Protocol,
    Union,
)

import websockets
from websockets.exceptions import ConnectionClosed

from engine import Move, move_to_obj
from . import messages as m

logger = logging.getLogger(__name__)

ConnState = Literal["idle", "connecting", "open", "reconnecting", "closed"]


class Channel(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]: ...


Connector = Callable[[str], Awaitable[Channel]]
Listener = Callable[[m.Message], None]
StateListener = Callable[[ConnState], None]


@dataclass
class ConnectionConfig:
    url: str = "ws://localhost:5000/ws-rooms"
    ping_interval: float = 30.0
    reconnect_delay: float = 1.0
    max_reconnect_attempts: int = 5


class ConnectionManager:
    """Owns one logical channel. Not shared: every session builds its own."""

    def __init__(
        self,
        config: Optional[ConnectionConfig] = None,
        *,
        connector: Optional[Connector] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.config = config or ConnectionConfig()
        self._connector: Connector = connector or websockets.connect
        self._sleep = sleep or asyncio.sleep
        self.state: ConnState = "idle"
        self.user_id: Optional[str] = None
        self.connection_id: Optional[str] = None
        self.authenticated = False
        self.reconnect_attempts = 0
        self.last_pong: Optional[float] = None
        self._ws: Optional[Channel] = None
        self._queue: Deque[m.Message] = deque()
        self._listeners: Dict[str, List[Listener]] = {}
        self._state_listeners: List[StateListener] = []
        self._opened: Optional[asyncio.Future[None]] = None
        self._authed: Optional[asyncio.Future[None]] = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._heartbeat: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None

    # --- status ---

    @property
    def is_connected(self) -> bool:
        return self.state == "open"

    @property
    def is_ready(self) -> bool:
        return self.is_connected and self.authenticated

    @property
    def connection(self) -> Dict[str, Any]:
        return {"id": self.connection_id, "authenticated": self.authenticated}

    @property
    def queued(self) -> List[m.Message]:
        return list(self._queue)

    def backoff_delay(self, attempt: int) -> float:
        return self.config.reconnect_delay * attempt

    # --- lifecycle ---

    async def connect(self, user_id: str) -> None:
        """Open the channel; resolves once it is open and the auth frame is out.

        Concurrent callers share the attempt already in flight.
        """
        if self.state == "open":
            return
        if self._opened is not None and not self._opened.done():
            await asyncio.shield(self._opened)
            return
        self.user_id = user_id
        self._cancel_reconnect()
        self._set_state("connecting")
        await self._start_attempt()

    async def reconnect(self) -> None:
        if self.user_id is None:
            raise RuntimeError("reconnect() before connect()")
        self.reconnect_attempts = 0
        await self.connect(self.user_id)

    async def disconnect(self) -> None:
        # Suppresses auto-reconnect; safe to call repeatedly
        self.reconnect_attempts = self.config.max_reconnect_attempts
        self._set_state("closed")
        self._stop_heartbeat()
        self._cancel_reconnect()
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self._reader = None
        if self._opened is not None and not self._opened.done():
            self._reject(self._opened, ConnectionError("disconnected by caller"))
        if self._authed is not None and not self._authed.done():
            self._reject(self._authed, ConnectionError("disconnected by caller"))
        self.authenticated = False
        self.connection_id = None
        self._listeners.clear()
        self._state_listeners.clear()
        self._queue.clear()

    async def wait_authenticated(self) -> None:
        if self.authenticated:
            return
        if self._authed is None or self._authed.done():
            self._authed = asyncio.get_running_loop().create_future()
        await self._authed

    def _start_attempt(self) -> "asyncio.Future[None]":
        opened: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._opened = opened
        self._reader = asyncio.create_task(self._run(opened))
        return opened

    async def _run(self, opened: "asyncio.Future[None]") -> None:
        try:
            ws = await self._connector(self.config.url)
        except Exception as e:
            logger.error(f"Connection to {self.config.url} failed: {e}")
            self._reject(opened, e)
            self._on_closed()
            return
        if self.state == "closed":
            await ws.close()
            return
        self._ws = ws
        try:
            await self._on_open(ws, opened)
            async for raw in ws:
                self._handle_raw(raw)
        except ConnectionClosed as e:
            logger.info(f"Channel closed: {e}")
        finally:
            if self._ws is ws:
                self._on_closed()

    async def _on_open(self, ws: Channel, opened: "asyncio.Future[None]") -> None:
        logger.info(f"Connected to {self.config.url}")
        self.reconnect_attempts = 0
        await ws.send(m.encode(m.make(m.AUTH, userId=self.user_id)))
        # Queued frames go out before anything sent from now on
        while self._queue:
            await ws.send(m.encode(self._queue[0]))
            self._queue.popleft()
        self._set_state("open")
        self._start_heartbeat()
        if not opened.done():
            opened.set_result(None)

    def _on_closed(self) -> None:
        self._ws = None
        self.authenticated = False
        self.connection_id = None
        self._stop_heartbeat()
        if self._opened is not None and not self._opened.done():
            self._reject(self._opened, ConnectionError("channel closed before opening"))
        if self.state == "closed":
            return
        if self.reconnect_attempts < self.config.max_reconnect_attempts:
            self.reconnect_attempts += 1
            delay = self.backoff_delay(self.reconnect_attempts)
            logger.info(f"Reconnecting in {delay}s (attempt {self.reconnect_attempts})")
            self._set_state("reconnecting")
            self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
        else:
            logger.error(f"Giving up after {self.reconnect_attempts} reconnect attempts")
            self._set_state("closed")

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self.state != "reconnecting":
            return
        self._reconnect_task = None
        self._start_attempt()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    def _reject(fut: "asyncio.Future[None]", exc: BaseException) -> None:
        if fut.done():
            return
        fut.set_exception(exc)
        # Mark retrieved: background attempts may have nobody awaiting them
        fut.exception()

    def _set_state(self, new: ConnState) -> None:
        if self.state == new:
            return
        self.state = new
        for cb in list(self._state_listeners):
            try:
                cb(new)
            except Exception:
                logger.exception("Error in connection state listener")

    # --- heartbeat ---

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat = self._heartbeat, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.ping_interval)
            if self.state == "open":
                await self.send(m.make(m.SESSION_PING, ts=int(time.time() * 1000)))

    # --- inbound ---

    def _handle_raw(self, raw: Union[str, bytes]) -> None:
        try:
            message = m.decode(raw)
        except m.MalformedMessage as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return
        self._handle_message(message)

    def _handle_message(self, message: m.Message) -> None:
        tag = message["type"]
        if tag == m.CONNECTED:
            self.connection_id = message.get("connectionId")
        elif tag == m.AUTHENTICATED:
            self.authenticated = True
            if self._authed is not None and not self._authed.done():
                self._authed.set_result(None)
        elif tag == m.SESSION_PONG:
            self.last_pong = time.monotonic()
        elif tag == m.ERROR:
            logger.warning(f"Server error: {message.get('message')}")

        for cb in list(self._listeners.get(tag, ())):
            try:
                cb(message)
            except Exception:
                logger.exception(f"Error in listener for {tag}")

    def on(self, tag: str, callback: Listener) -> None:
        callbacks = self._listeners.setdefault(tag, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def off(self, tag: str, callback: Listener) -> None:
        callbacks = self._listeners.get(tag)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def on_state(self, callback: StateListener) -> None:
        if callback not in self._state_listeners:
            self._state_listeners.append(callback)

    # --- outbound ---

    async def send(self, message: m.Message) -> None:
        ws = self._ws
        if self.state == "open" and ws is not None:
            try:
                await ws.send(m.encode(message))
                return
            except ConnectionClosed:
                logger.warning(f"Channel dropped while sending {message.get('type')}; queued")
        self._queue.append(message)

    async def create_room(self, **settings: Any) -> None:
        await self.send(m.make(m.ROOM_CREATE, **settings))

    async def join_room(self, code: str, password: Optional[str] = None) -> None:
        await self.send(m.make(m.ROOM_JOIN, code=code, password=password))

    async def leave_room(self, code: str) -> None:
        await self.send(m.make(m.ROOM_LEAVE, code=code))

    async def subscribe_room_list(self) -> None:
        await self.send(m.make(m.ROOM_LIST_SUBSCRIBE))

    async def unsubscribe_room_list(self) -> None:
        await self.send(m.make(m.ROOM_LIST_UNSUBSCRIBE))

    async def update_room_settings(self, code: str, settings: Dict[str, Any], version: Optional[int] = None) -> None:
        await self.send(m.make(m.ROOM_SETTINGS_UPDATE, code=code, settings=settings, version=version))

    async def set_ready(self, code: str, ready: bool) -> None:
        await self.send(m.make(m.ROOM_READY_SET, code=code, ready=ready))

    async def start_game(self, code: str) -> None:
        await self.send(m.make(m.GAME_START, code=code))

    async def submit_move(self, code: str, move: Union[Move, Dict[str, Any]]) -> None:
        payload = move_to_obj(move) if isinstance(move, Move) else dict(move)
        await self.send(m.make(m.MOVE_SUBMIT, code=code, move=payload))
