import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from websockets.exceptions import ConnectionClosedError

from engine import GameConfig, GameState, Grid, Card, PlayerKind, apply_move, new_game, peek
from online import ConnectionConfig, ConnectionManager, Message


class FakeChannel:
    """In-memory stand-in for a websocket client connection."""

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.closed = False
        self._sent_more = asyncio.Event()
        self._inbox: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)
        self._sent_more.set()

    async def close(self) -> None:
        self.drop()

    def drop(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def push(self, message: Dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps(message))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    async def wait_sent(self, tag: str, timeout: float = 1.0) -> Dict[str, Any]:
        async def scan() -> Dict[str, Any]:
            while True:
                for msg in self.messages:
                    if msg["type"] == tag:
                        return msg
                self._sent_more.clear()
                await self._sent_more.wait()

        return await asyncio.wait_for(scan(), timeout)

    def __aiter__(self) -> "FakeChannel":
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeServer:
    """Connector that refuses the first ``failures`` attempts."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.urls: List[str] = []
        self.channels: List[FakeChannel] = []

    async def connect(self, url: str) -> FakeChannel:
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        ch = FakeChannel()
        self.channels.append(ch)
        return ch

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]


class RecordingSleep:
    """Backoff sleep that records delays; ``hold()`` parks callers until ``release()``."""

    def __init__(self) -> None:
        self.delays: List[float] = []
        self._gate = asyncio.Event()
        self._gate.set()

    def hold(self) -> None:
        self._gate.clear()

    def release(self) -> None:
        self._gate.set()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._gate.wait()


async def wait_for_state(manager: ConnectionManager, *states: str, timeout: float = 1.0) -> None:
    if manager.state in states:
        return
    reached = asyncio.Event()

    def watch(new: str) -> None:
        if new in states:
            reached.set()

    manager.on_state(watch)
    await asyncio.wait_for(reached.wait(), timeout)


async def next_message(manager: ConnectionManager, tag: str, timeout: float = 1.0) -> Message:
    """Resolve with the next ``tag`` frame, after the listeners registered before this call."""
    arrived: "asyncio.Future[Message]" = asyncio.get_running_loop().create_future()

    def once(message: Message) -> None:
        manager.off(tag, once)
        if not arrived.done():
            arrived.set_result(message)

    manager.on(tag, once)
    return await asyncio.wait_for(arrived, timeout)



@pytest.fixture()
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture()
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def make_manager(sleeper: RecordingSleep) -> Callable[..., ConnectionManager]:
    def _make(server: FakeServer, **overrides: Any) -> ConnectionManager:
        cfg = ConnectionConfig(url="ws://test/ws-rooms", ping_interval=3600.0)
        for k, v in overrides.items():
            setattr(cfg, k, v)
        return ConnectionManager(cfg, connector=server.connect, sleep=sleeper)

    return _make


@pytest.fixture()
def manager(make_manager: Callable[..., ConnectionManager], server: FakeServer) -> ConnectionManager:
    return make_manager(server)


# --- engine helpers ---

def _card(text: str) -> Card:
    return Card(text[:-1], text[-1])


@pytest.fixture()
def rig_grid() -> Callable[..., Grid]:
    """Replace a player's grid with the given cards, revealing ``revealed``."""

    def _rig(state: GameState, idx: int, texts: Sequence[str], revealed: Sequence[int] = ()) -> Grid:
        g = Grid([_card(t) for t in texts])
        for pos in revealed:
            g.reveal(pos)
        state.players[idx].grid = g
        return g

    return _rig


@pytest.fixture()
def started_game() -> Callable[..., GameState]:
    """New game with every player's two peeks done (cells 0 and 1): phase is ``turn``."""

    def _start(
        players: Sequence[Tuple[PlayerKind, str]] = (("H", "P0"), ("H", "P1")),
        seed: int = 7,
        rounds: int = 9,
    ) -> GameState:
        state = new_game(GameConfig(players=list(players), rounds=rounds, seed=seed))
        for p in state.players:
            apply_move(state, p.id, peek(0))
            apply_move(state, p.id, peek(1))
        return state

    return _start
