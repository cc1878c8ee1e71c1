"""Room and lobby management.

Owns every Room and Participant record. Live connections are held only as
opaque ``DeliverableHandle`` objects and never leave this module in a
snapshot.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from game.board import MAX_SEATS, seat_color
from server.errors import (
    GameAlreadyStartedError, NotEnoughPlayersError, RoomNotFoundError
)
from server.protocol import Message

logger = logging.getLogger(__name__)

# Excludes 0, O, 1 and I
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class DeliverableHandle(Protocol):
    """Anything that can take a serialized message for one client."""

    def try_send(self, payload: str) -> bool:
        """Queue payload for delivery. Returns False if it was dropped."""
        ...


class ParticipantRole(Enum):
    PLAYER = "player"
    SPECTATOR = "spectator"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(eq=False)
class Participant:
    """A player or spectator inside a room."""

    player_id: str
    name: str
    address: str
    role: ParticipantRole = ParticipantRole.PLAYER
    color_index: Optional[int] = None
    is_host: bool = False
    handle: Optional[DeliverableHandle] = field(default=None, repr=False)
    joined_at: int = field(default_factory=_now_ms)

    @property
    def is_player(self) -> bool:
        return self.role == ParticipantRole.PLAYER

    def to_public_dict(self) -> Dict:
        if not self.is_player:
            return {"id": self.player_id, "name": self.name}
        return {
            "id": self.player_id,
            "name": self.name,
            "color": seat_color(self.color_index),
            "colorIndex": self.color_index,
            "isHost": self.is_host,
        }


@dataclass
class Room:
    """A lobby that becomes a game once started."""

    room_id: str
    host_id: str
    players: List[Participant] = field(default_factory=list)
    spectators: List[Participant] = field(default_factory=list)
    game_started: bool = False
    created_at: int = field(default_factory=_now_ms)

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def participants(self) -> List[Participant]:
        return self.players + self.spectators

    def find(self, player_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.player_id == player_id:
                return participant
        return None


@dataclass
class JoinResult:
    room: Room
    participant: Participant
    spectator: bool


@dataclass
class RemovalResult:
    """Outcome of removing someone from a room.

    ``room`` is None when the room was destroyed by the removal.
    """
    room: Optional[Room]
    removed: Optional[Participant] = None
    room_closed: bool = False
    host_changed: bool = False
    orphaned_spectators: List[Participant] = field(default_factory=list)


class RoomRegistry:
    """Creates, joins, leaves and broadcasts to rooms."""

    def __init__(
        self,
        max_players: int = MAX_SEATS,
        min_players: int = 2,
        code_length: int = 6,
        rng: Optional[random.Random] = None
    ):
        self.max_players = min(max_players, MAX_SEATS)
        self.min_players = min_players
        self.code_length = code_length
        self._rng = rng or random.Random()
        self._rooms: Dict[str, Room] = {}

    # --- Lookup ---

    def get(self, room_id: Optional[str]) -> Optional[Room]:
        """Get a room by code (case-insensitive)."""
        if not room_id:
            return None
        return self._rooms.get(room_id.upper())

    def require(self, room_id: Optional[str]) -> Room:
        room = self.get(room_id)
        if room is None:
            raise RoomNotFoundError()
        return room

    def find_participant(self, room_id: str, player_id: str) -> Optional[Participant]:
        room = self.get(room_id)
        return room.find(player_id) if room else None

    def room_ids(self) -> List[str]:
        return list(self._rooms.keys())

    def __contains__(self, room_id: str) -> bool:
        return self.get(room_id) is not None

    def __len__(self) -> int:
        return len(self._rooms)

    # --- Lifecycle ---

    def _generate_code(self) -> str:
        return "".join(self._rng.choice(ROOM_CODE_ALPHABET) for _ in range(self.code_length))

    def create_room(
        self,
        player_id: str,
        name: str,
        address: str,
        handle: Optional[DeliverableHandle] = None
    ) -> Room:
        """Create a room with the caller seated as host in seat 0."""
        room_id = self._generate_code()
        while room_id in self._rooms:
            room_id = self._generate_code()

        host = Participant(
            player_id=player_id,
            name=name,
            address=address,
            color_index=0,
            is_host=True,
            handle=handle,
        )
        room = Room(room_id=room_id, host_id=player_id, players=[host])
        self._rooms[room_id] = room
        logger.info("Room %s created by %s", room_id, name)
        return room

    def join_room(
        self,
        room_id: str,
        player_id: str,
        name: str,
        address: str,
        handle: Optional[DeliverableHandle] = None
    ) -> JoinResult:
        """Seat a newcomer, or admit them as spectator if started or full.

        Raises:
            RoomNotFoundError: No room with that code.
        """
        room = self.require(room_id)

        existing = room.find(player_id)
        if existing:
            # Same identity joining again: refresh the connection only
            existing.handle = handle
            return JoinResult(room=room, participant=existing, spectator=not existing.is_player)

        if room.game_started or room.player_count >= self.max_players:
            spectator = Participant(
                player_id=player_id,
                name=name,
                address=address,
                role=ParticipantRole.SPECTATOR,
                handle=handle,
            )
            room.spectators.append(spectator)
            logger.info("%s joined room %s as spectator", name, room.room_id)
            return JoinResult(room=room, participant=spectator, spectator=True)

        player = Participant(
            player_id=player_id,
            name=name,
            address=address,
            color_index=room.player_count,
            handle=handle,
        )
        room.players.append(player)
        logger.info("%s joined room %s in seat %d", name, room.room_id, player.color_index)
        return JoinResult(room=room, participant=player, spectator=False)

    def remove_participant(self, room_id: str, player_id: str) -> RemovalResult:
        """Remove a player or spectator.

        Before the game starts, remaining seats are renumbered from 0 and seat
        0 holds the host role. A room left without players is destroyed; its
        spectators are returned as orphaned.

        Raises:
            RoomNotFoundError: No room with that code.
        """
        room = self.require(room_id)

        for index, player in enumerate(room.players):
            if player.player_id == player_id:
                del room.players[index]
                return self._after_player_removed(room, player)

        for index, spectator in enumerate(room.spectators):
            if spectator.player_id == player_id:
                del room.spectators[index]
                return RemovalResult(room=room, removed=spectator)

        return RemovalResult(room=room)

    def _after_player_removed(self, room: Room, removed: Participant) -> RemovalResult:
        if not room.players:
            del self._rooms[room.room_id]
            orphaned = list(room.spectators)
            room.spectators.clear()
            logger.info("Room %s closed (no players left)", room.room_id)
            return RemovalResult(
                room=None,
                removed=removed,
                room_closed=True,
                orphaned_spectators=orphaned,
            )

        host_changed = False
        if not room.game_started:
            for index, player in enumerate(room.players):
                player.color_index = index
                player.is_host = index == 0
            if room.host_id != room.players[0].player_id:
                room.host_id = room.players[0].player_id
                host_changed = True
                logger.info("Room %s host is now %s", room.room_id, room.players[0].name)

        return RemovalResult(room=room, removed=removed, host_changed=host_changed)

    def can_start(self, room_id: str) -> bool:
        room = self.get(room_id)
        return room is not None and room.player_count >= self.min_players

    def start_game(self, room_id: str) -> Room:
        """Mark a room as started. Gameplay state is created by the caller.

        Raises:
            RoomNotFoundError: No room with that code.
            GameAlreadyStartedError: The room is already playing.
            NotEnoughPlayersError: Fewer than the minimum players are seated.
        """
        room = self.require(room_id)
        if room.game_started:
            raise GameAlreadyStartedError()
        if room.player_count < self.min_players:
            raise NotEnoughPlayersError(f"Need at least {self.min_players} players to start")
        room.game_started = True
        return room

    # --- Connections ---

    def attach_handle(self, room_id: str, player_id: str, handle: Optional[DeliverableHandle]) -> bool:
        """Point a participant at a new connection. Returns False if not found."""
        participant = self.find_participant(room_id, player_id)
        if participant is None:
            return False
        participant.handle = handle
        return True

    def detach_handle(self, room_id: str, player_id: str) -> bool:
        return self.attach_handle(room_id, player_id, None)

    def _deliver(self, recipients: List[Participant], message: Message, exclude: Optional[str]) -> int:
        payload = message.to_json()
        delivered = 0
        for participant in recipients:
            if participant.player_id == exclude or participant.handle is None:
                continue
            if participant.handle.try_send(payload):
                delivered += 1
            else:
                logger.debug("Dropped %s for %s", message.type, participant.player_id)
        return delivered

    def broadcast(self, room_id: str, message: Message, exclude: Optional[str] = None) -> int:
        """Send to every connected player and spectator. Returns delivered count."""
        room = self.get(room_id)
        if not room:
            return 0
        return self._deliver(room.participants, message, exclude)

    # --- Views ---

    def snapshot(self, room_id: str) -> Optional[Dict]:
        """Client-facing room view. The only room data sent over the wire."""
        room = self.get(room_id)
        if not room:
            return None
        return {
            "id": room.room_id,
            "hostId": room.host_id,
            "players": [p.to_public_dict() for p in room.players],
            "spectators": [s.to_public_dict() for s in room.spectators],
            "gameStarted": room.game_started,
            "playerCount": room.player_count,
            "spectatorCount": len(room.spectators),
            "maxPlayers": self.max_players,
            "createdAt": room.created_at,
        }
