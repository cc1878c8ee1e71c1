"""WebSocket message protocol definitions for AshtaPashaka multiplayer.

Frames are flat JSON objects: a ``type`` discriminator plus payload fields,
e.g. ``{"type": "MOVE_PIECE", "tokenId": 2}``.
"""
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Union
import json

from server.errors import ProtocolError


class ServerMessageType(Enum):
    """Message types sent from server to client."""
    # Connection
    CONNECTED = "CONNECTED"
    RECONNECTED = "RECONNECTED"
    ERROR = "ERROR"

    # Rooms
    ROOM_CREATED = "ROOM_CREATED"
    ROOM_JOINED = "ROOM_JOINED"
    JOINED_AS_SPECTATOR = "JOINED_AS_SPECTATOR"
    PLAYER_JOINED = "PLAYER_JOINED"
    PLAYER_LEFT = "PLAYER_LEFT"
    LEFT_ROOM = "LEFT_ROOM"
    ROOM_STATE = "ROOM_STATE"

    # Game state
    GAME_STARTED = "GAME_STARTED"
    GAME_STATE = "GAME_STATE"
    DICE_ROLLED = "DICE_ROLLED"
    PIECE_MOVED = "PIECE_MOVED"
    PLAYER_DISCONNECTED = "PLAYER_DISCONNECTED"

    # Social
    CHAT = "CHAT"


class ClientMessageType(Enum):
    """Message types sent from client to server."""
    # Rooms
    CREATE_ROOM = "CREATE_ROOM"
    JOIN_ROOM = "JOIN_ROOM"
    LEAVE_ROOM = "LEAVE_ROOM"
    START_GAME = "START_GAME"

    # Game actions
    ROLL_DICE = "ROLL_DICE"
    MOVE_PIECE = "MOVE_PIECE"

    # Social
    CHAT = "CHAT"


class GamePhase(Enum):
    """Turn phases of a running game."""
    ROLL_DICE = "ROLL_DICE"
    SELECT_PIECE = "SELECT_PIECE"
    GAME_OVER = "GAME_OVER"


@dataclass
class Message:
    """Base message class for WebSocket communication."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps({**self.data, "type": self.type})

    @classmethod
    def from_json(cls, json_str: Union[str, bytes]) -> 'Message':
        """Deserialize message from JSON string.

        Raises:
            ProtocolError: If the frame is not a JSON object with a string type.
        """
        try:
            obj = json.loads(json_str)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError("Invalid message format") from e

        if not isinstance(obj, dict):
            raise ProtocolError("Invalid message format")

        msg_type = obj.pop("type", "")
        if not isinstance(msg_type, str):
            raise ProtocolError("Message type must be a string")
        return cls(type=msg_type, data=obj)


# Server -> Client message builders
def connected_message(player_id: str) -> Message:
    """Build message for a brand new connection."""
    return Message(
        type=ServerMessageType.CONNECTED.value,
        data={"playerId": player_id}
    )


def reconnected_message(player_id: str, room_id: Optional[str]) -> Message:
    """Build message for a connection resuming an existing identity."""
    return Message(
        type=ServerMessageType.RECONNECTED.value,
        data={
            "playerId": player_id,
            "roomId": room_id
        }
    )


def error_message(code: str, message: str) -> Message:
    """Build error message."""
    return Message(
        type=ServerMessageType.ERROR.value,
        data={
            "code": code,
            "message": message
        }
    )


def room_created_message(room_view: Dict[str, Any]) -> Message:
    """Build room created message for the host."""
    return Message(
        type=ServerMessageType.ROOM_CREATED.value,
        data={**room_view, "roomId": room_view["id"]}
    )


def room_joined_message(room_view: Dict[str, Any], spectator: bool = False) -> Message:
    """Build join confirmation, as player or spectator."""
    msg_type = ServerMessageType.JOINED_AS_SPECTATOR if spectator else ServerMessageType.ROOM_JOINED
    return Message(
        type=msg_type.value,
        data={**room_view, "roomId": room_view["id"]}
    )


def player_joined_message(player_id: str, room_view: Dict[str, Any]) -> Message:
    """Build notice to existing members that someone joined."""
    return Message(
        type=ServerMessageType.PLAYER_JOINED.value,
        data={**room_view, "playerId": player_id}
    )


def player_left_message(player_id: str, room_view: Dict[str, Any]) -> Message:
    """Build player left message."""
    return Message(
        type=ServerMessageType.PLAYER_LEFT.value,
        data={**room_view, "playerId": player_id}
    )


def left_room_message(reason: Optional[str] = None) -> Message:
    """Build confirmation that the receiver is no longer in a room."""
    data: Dict[str, Any] = {}
    if reason:
        data["reason"] = reason
    return Message(type=ServerMessageType.LEFT_ROOM.value, data=data)


def room_state_message(room_view: Dict[str, Any]) -> Message:
    """Build full room state sync message."""
    return Message(
        type=ServerMessageType.ROOM_STATE.value,
        data=dict(room_view)
    )


def game_started_message(game_view: Dict[str, Any]) -> Message:
    """Build game started message."""
    return Message(
        type=ServerMessageType.GAME_STARTED.value,
        data=dict(game_view)
    )


def game_state_message(game_view: Dict[str, Any], **extra: Any) -> Message:
    """Build full game state sync message."""
    return Message(
        type=ServerMessageType.GAME_STATE.value,
        data={**game_view, **extra}
    )


def dice_rolled_message(
    player_id: str,
    dice_value: int,
    valid_moves: List[Dict[str, Any]],
    skipped: bool,
    game_view: Dict[str, Any]
) -> Message:
    """Build dice rolled message."""
    return Message(
        type=ServerMessageType.DICE_ROLLED.value,
        data={
            **game_view,
            "playerId": player_id,
            "diceValue": dice_value,
            "validMoves": valid_moves,
            "skipped": skipped
        }
    )


def piece_moved_message(
    player_id: str,
    token_id: int,
    captured: Optional[Dict[str, Any]],
    game_over: bool,
    winner: Optional[str],
    game_view: Dict[str, Any]
) -> Message:
    """Build piece moved message."""
    return Message(
        type=ServerMessageType.PIECE_MOVED.value,
        data={
            **game_view,
            "playerId": player_id,
            "tokenId": token_id,
            "captured": captured,
            "gameOver": game_over,
            "winner": winner
        }
    )


def player_disconnected_message(
    player_id: str,
    game_over: bool,
    winner: Optional[str],
    game_view: Dict[str, Any]
) -> Message:
    """Build message announcing a player dropped out of a running game."""
    return Message(
        type=ServerMessageType.PLAYER_DISCONNECTED.value,
        data={
            **game_view,
            "playerId": player_id,
            "gameOver": game_over,
            "winner": winner
        }
    )


def chat_message(player_id: str, player_name: str, text: str, timestamp: int) -> Message:
    """Build chat relay message."""
    return Message(
        type=ServerMessageType.CHAT.value,
        data={
            "playerId": player_id,
            "playerName": player_name,
            "message": text,
            "timestamp": timestamp
        }
    )


# Client -> Server message parsers
def _required_text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        return ""
    return value.strip()


def parse_create_room_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse CREATE_ROOM message data."""
    player_name = _required_text(data, "playerName")
    if not player_name:
        raise ProtocolError("Player name is required")
    return {"player_name": player_name}


def parse_join_room_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse JOIN_ROOM message data. Room codes are case-insensitive."""
    room_id = _required_text(data, "roomId")
    player_name = _required_text(data, "playerName")
    if not room_id or not player_name:
        raise ProtocolError("Room ID and player name are required")
    return {
        "room_id": room_id.upper(),
        "player_name": player_name
    }


def parse_move_piece_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse MOVE_PIECE message data."""
    token_id = data.get("tokenId")
    # bool is an int subclass; reject it explicitly
    if isinstance(token_id, bool) or not isinstance(token_id, int):
        raise ProtocolError("tokenId must be an integer")
    return {"token_id": token_id}


def parse_chat_message(data: Dict[str, Any], max_length: int = 500) -> Dict[str, Any]:
    """Parse CHAT message data."""
    text = _required_text(data, "text")
    if not text:
        raise ProtocolError("Chat message is empty")
    return {"text": text[:max_length]}
