"""Shared test fixtures for AshtaPashaka server tests."""
import json
import random
from typing import Any, Dict, Iterable, List, Optional

import pytest

from game.config_loader import ConfigLoader
from server.gateway import SessionGateway
from server.identity import IdentityTracker
from server.rooms import Room, RoomRegistry
from server.session import GameSession, GameSessionStore, RosterEntry


class FakeHandle:
    """In-memory DeliverableHandle that records every payload."""

    def __init__(self, open: bool = True):
        self.open = open
        self.payloads: List[str] = []

    def try_send(self, payload: str) -> bool:
        if not self.open:
            return False
        self.payloads.append(payload)
        return True

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(p) for p in self.payloads]

    def of_type(self, msg_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["type"] == msg_type]

    def last(self, msg_type: Optional[str] = None) -> Dict[str, Any]:
        messages = self.of_type(msg_type) if msg_type else self.messages
        assert messages, f"no {msg_type or 'messages'} received"
        return messages[-1]

    def clear(self) -> None:
        self.payloads.clear()


class ScriptedDice:
    """Stands in for random.Random, returning queued dice values."""

    def __init__(self, values: Iterable[int] = ()):
        self.values = list(values)

    def push(self, *values: int) -> None:
        self.values.extend(values)

    def randint(self, low: int, high: int) -> int:
        assert self.values, "dice script exhausted"
        value = self.values.pop(0)
        assert low <= value <= high
        return value


@pytest.fixture(autouse=True)
def deterministic_random():
    """Seed random for reproducible tests."""
    random.seed(42)
    yield
    random.seed()


@pytest.fixture
def fake_handle():
    """Factory for recording connection handles."""
    return FakeHandle


@pytest.fixture
def dice():
    return ScriptedDice()


@pytest.fixture
def registry():
    return RoomRegistry(rng=random.Random(7))


@pytest.fixture
def identities():
    return IdentityTracker()


@pytest.fixture
def make_session(dice):
    """Factory for an initialized session without a turn timer."""
    def _make(player_ids=("alice", "bob"), turn_time_limit=None, on_timeout=None) -> GameSession:
        roster = [
            RosterEntry(player_id=pid, name=pid.title(), color_index=i)
            for i, pid in enumerate(player_ids)
        ]
        session = GameSession(
            "ROOM01",
            roster,
            turn_time_limit=turn_time_limit,
            on_timeout=on_timeout,
            rng=dice,
        )
        session.initialize()
        return session
    return _make


@pytest.fixture
def gateway(registry, identities, dice):
    """Gateway with scripted dice, no turn timer and a short grace period."""
    store = GameSessionStore(turn_time_limit=None, rng=dice)
    ids = iter(f"p{i}" for i in range(1, 1000))
    gw = SessionGateway(
        rooms=registry,
        sessions=store,
        identities=identities,
        grace_seconds=0.05,
        id_factory=lambda: next(ids),
    )
    return gw


@pytest.fixture
def make_room(registry):
    """Factory for a lobby with the given players seated in order."""
    def _make(*names: str) -> Room:
        first, *rest = names
        room = registry.create_room(first, first.title(), "10.0.0.1")
        for i, name in enumerate(rest, start=2):
            registry.join_room(room.room_id, name, name.title(), f"10.0.0.{i}")
        return room
    return _make


@pytest.fixture
def temp_config_dir(tmp_path, monkeypatch):
    """Create temporary config directory with a test game_settings.json."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    game_settings = {
        "rooms": {
            "max_players": 4,
            "min_players": 2,
            "room_code_length": 5,
        },
        "turns": {
            "turn_time_limit_seconds": 15,
        },
        "connections": {
            "reconnect_grace_seconds": 20,
        },
    }
    (config_dir / "game_settings.json").write_text(json.dumps(game_settings, indent=2))

    ConfigLoader._instance = None
    monkeypatch.setattr(ConfigLoader, '_config_dir', str(config_dir))

    yield config_dir

    ConfigLoader._instance = None
