# server/session.py
"""Turn state machine for a running game.

One GameSession exists per started room. It owns the roster snapshot taken
at start, every token, the dice and the turn timer. Actions are validated in
full before anything changes, so a rejected action leaves the session as it
was.

Phases:
    ROLL_DICE    -> current player must roll
    SELECT_PIECE -> dice rolled, current player must move a legal token
    GAME_OVER    -> terminal
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from game.board import (
    EXIT_ROLL, MoveType, Position, Token, Track,
    destination, move_type, new_tokens, seat_color,
)
from server.errors import (
    AlreadyRolledError, DiceNotRolledError, GameNotFoundError, GameOverError,
    IllegalMoveError, NotEnoughPlayersError, NotYourTurnError,
    PlayerNotFoundError, TokenNotFoundError,
)
from server.events import GameEvent, GameEventType
from server.protocol import GamePhase
from server.rooms import Room
from server.timers import TimerManager

logger = logging.getLogger(__name__)

DEFAULT_TURN_TIME_LIMIT = 10.0


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RosterEntry:
    """A player as seen by the game, fixed at start."""
    player_id: str
    name: str
    color_index: int

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.player_id,
            "name": self.name,
            "color": seat_color(self.color_index),
            "colorIndex": self.color_index,
        }


@dataclass
class PlayerPieces:
    """One player's tokens."""
    player_id: str
    color_index: int
    tokens: List[Token] = field(default_factory=new_tokens)

    def token(self, token_id: int) -> Optional[Token]:
        for token in self.tokens:
            if token.token_id == token_id:
                return token
        return None

    @property
    def all_finished(self) -> bool:
        return all(t.is_finished for t in self.tokens)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "colorIndex": self.color_index,
            "color": seat_color(self.color_index),
            "tokens": [t.to_dict() for t in self.tokens],
        }


@dataclass
class ValidMove:
    token_id: int
    move_type: MoveType
    destination: Position

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "type": self.move_type.value,
            "canMove": True,
            "to": self.destination.to_wire(),
        }


@dataclass
class Capture:
    player_id: str
    token_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {"playerId": self.player_id, "tokenId": self.token_id}


@dataclass
class MoveRecord:
    """One entry of the append-only move history."""
    player_id: str
    token_id: int
    dice_value: int
    captured: Optional[Capture]
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "tokenId": self.token_id,
            "diceValue": self.dice_value,
            "captured": self.captured.to_dict() if self.captured else None,
            "timestamp": self.timestamp,
        }


@dataclass
class RollResult:
    dice_value: int
    valid_moves: List[ValidMove]
    skipped: bool


@dataclass
class MoveResult:
    token_id: int
    destination: Position
    captured: Optional[Capture]
    game_over: bool
    winner: Optional[str]
    extra_turn: bool


@dataclass
class DisconnectResult:
    game_over: bool
    winner: Optional[str]
    was_current: bool


# (session, player whose turn expired)
TimeoutCallback = Callable[["GameSession", str], Awaitable[None]]


class GameSession:
    """Gameplay state and rules for one room."""

    TIMER_TURN = "turn"

    def __init__(
        self,
        room_id: str,
        roster: List[RosterEntry],
        turn_time_limit: Optional[float] = DEFAULT_TURN_TIME_LIMIT,
        on_timeout: Optional[TimeoutCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        """Create a session. Call ``initialize`` to deal tokens and start play.

        Args:
            room_id: Code of the room this game belongs to.
            roster: Players in seat order.
            turn_time_limit: Seconds per turn. None disables the turn timer.
            on_timeout: Awaited after a turn is forcibly advanced.
            rng: Dice source; anything with ``randint``.
        """
        self.room_id = room_id
        self.roster: List[RosterEntry] = list(roster)
        self.turn_time_limit = turn_time_limit
        self._on_timeout = on_timeout
        self._rng = rng or random.Random()

        self.pieces: Dict[str, PlayerPieces] = {}
        self.current_turn_index = 0
        self.dice_value: Optional[int] = None
        self.dice_rolled = False
        self._phase = GamePhase.ROLL_DICE
        self.winner: Optional[str] = None
        self.started_at: Optional[int] = None
        self.turn_started_at: Optional[int] = None
        self.history: List[MoveRecord] = []

        self._turn_seq = 0
        self.timers = TimerManager(self._on_timer_event)

    @classmethod
    def from_room(cls, room: Room, **kwargs) -> "GameSession":
        roster = [
            RosterEntry(player_id=p.player_id, name=p.name, color_index=p.color_index)
            for p in room.players
        ]
        return cls(room.room_id, roster, **kwargs)

    # --- Properties ---

    @property
    def phase(self) -> GamePhase:
        return self._phase

    @property
    def is_over(self) -> bool:
        return self._phase == GamePhase.GAME_OVER

    @property
    def current_player_id(self) -> Optional[str]:
        if not self.roster:
            return None
        return self.roster[self.current_turn_index].player_id

    def has_player(self, player_id: str) -> bool:
        return player_id in self.pieces

    # --- Lifecycle ---

    def initialize(self) -> None:
        """Deal four tokens per player at home and start seat 0's turn."""
        if len(self.roster) < 2:
            raise NotEnoughPlayersError()

        self.pieces = {
            entry.player_id: PlayerPieces(player_id=entry.player_id, color_index=entry.color_index)
            for entry in self.roster
        }
        self.current_turn_index = 0
        self._clear_dice()
        self._phase = GamePhase.ROLL_DICE
        self.winner = None
        self.history = []
        self.started_at = _now_ms()
        self._arm_turn_timer()
        logger.info("Game started in room %s with %d players", self.room_id, len(self.roster))

    def close(self) -> None:
        """Cancel every pending timer."""
        self.timers.cancel_all()

    # --- Actions ---

    def roll_dice(self, player_id: str) -> RollResult:
        """Roll for the current player.

        With no legal move the turn passes on at once and ``skipped`` is set.

        Raises:
            GameOverError, NotYourTurnError, AlreadyRolledError
        """
        self._require_turn(player_id)
        if self.dice_rolled:
            raise AlreadyRolledError()

        value = self._rng.randint(1, 6)

        self._cancel_turn_timer()
        self.dice_value = value
        self.dice_rolled = True
        self._phase = GamePhase.SELECT_PIECE

        moves = self._legal_moves(self.pieces[player_id], value)
        if not moves:
            logger.debug("Room %s: %s rolled %d, no moves", self.room_id, player_id, value)
            self._advance_turn()
            return RollResult(dice_value=value, valid_moves=[], skipped=True)

        self._arm_turn_timer()
        return RollResult(dice_value=value, valid_moves=moves, skipped=False)

    def get_valid_moves(self, player_id: str) -> List[ValidMove]:
        """Legal moves for a player with the current dice value."""
        pieces = self.pieces.get(player_id)
        if pieces is None or self.dice_value is None:
            return []
        return self._legal_moves(pieces, self.dice_value)

    def move_piece(self, player_id: str, token_id: int) -> MoveResult:
        """Move one of the current player's tokens by the rolled value.

        Raises:
            GameOverError, NotYourTurnError, DiceNotRolledError,
            TokenNotFoundError, IllegalMoveError
        """
        self._require_turn(player_id)
        if not self.dice_rolled or self.dice_value is None:
            raise DiceNotRolledError()

        pieces = self.pieces[player_id]
        token = pieces.token(token_id)
        if token is None:
            raise TokenNotFoundError()

        dice_value = self.dice_value
        target = destination(token.position, pieces.color_index, dice_value)
        if target is None:
            raise IllegalMoveError()

        self._cancel_turn_timer()
        token.position = target

        captured = None
        if isinstance(target, Track):
            captured = self._capture_at(player_id, target.cell)

        self.history.append(MoveRecord(
            player_id=player_id,
            token_id=token_id,
            dice_value=dice_value,
            captured=captured,
            timestamp=_now_ms(),
        ))

        if pieces.all_finished:
            self._finish(player_id)
            return MoveResult(
                token_id=token_id,
                destination=target,
                captured=captured,
                game_over=True,
                winner=player_id,
                extra_turn=False,
            )

        extra_turn = dice_value == EXIT_ROLL
        if extra_turn:
            self._clear_dice()
            self._phase = GamePhase.ROLL_DICE
            self._arm_turn_timer()
        else:
            self._advance_turn()

        return MoveResult(
            token_id=token_id,
            destination=target,
            captured=captured,
            game_over=False,
            winner=None,
            extra_turn=extra_turn,
        )

    def on_disconnect(self, player_id: str) -> DisconnectResult:
        """Drop a player and their tokens from the game.

        If they held the turn it passes to the next player first. The game
        ends when one player remains.

        Raises:
            PlayerNotFoundError: Not part of this game's roster.
        """
        if player_id not in self.pieces:
            raise PlayerNotFoundError()
        if self.is_over:
            return DisconnectResult(game_over=True, winner=self.winner, was_current=False)

        was_current = player_id == self.current_player_id
        if was_current:
            self._cancel_turn_timer()
            next_index = (self.current_turn_index + 1) % len(self.roster)
            next_player_id = self.roster[next_index].player_id
        else:
            next_player_id = self.current_player_id

        self.roster = [entry for entry in self.roster if entry.player_id != player_id]
        del self.pieces[player_id]
        logger.info("Room %s: %s left the game", self.room_id, player_id)

        if len(self.roster) <= 1:
            self.current_turn_index = 0
            self._finish(self.roster[0].player_id if self.roster else None)
            return DisconnectResult(game_over=True, winner=self.winner, was_current=was_current)

        self.current_turn_index = next(
            (i for i, entry in enumerate(self.roster) if entry.player_id == next_player_id),
            0,
        )
        if was_current:
            self._clear_dice()
            self._phase = GamePhase.ROLL_DICE
            self._arm_turn_timer()

        return DisconnectResult(game_over=False, winner=None, was_current=was_current)

    # --- Views ---

    def snapshot(self) -> Dict[str, Any]:
        """Client-facing game view. The only gameplay data sent over the wire."""
        return {
            "roomId": self.room_id,
            "players": [entry.to_public_dict() for entry in self.roster],
            "playerCount": len(self.roster),
            "pieces": {pid: pieces.to_dict() for pid, pieces in self.pieces.items()},
            "currentTurnIndex": self.current_turn_index,
            "currentPlayerId": self.current_player_id,
            "diceValue": self.dice_value,
            "diceRolled": self.dice_rolled,
            "phase": self._phase.value,
            "winner": self.winner,
            "startedAt": self.started_at,
            "turnStartedAt": self.turn_started_at,
            "turnTimeLimit": int(self.turn_time_limit * 1000) if self.turn_time_limit else None,
            "moveCount": len(self.history),
        }

    # --- Internals ---

    def _require_turn(self, player_id: str) -> None:
        if self.is_over:
            raise GameOverError()
        if player_id != self.current_player_id:
            raise NotYourTurnError()

    def _legal_moves(self, pieces: PlayerPieces, dice_value: int) -> List[ValidMove]:
        moves = []
        for token in pieces.tokens:
            target = destination(token.position, pieces.color_index, dice_value)
            if target is not None:
                moves.append(ValidMove(
                    token_id=token.token_id,
                    move_type=move_type(token.position),
                    destination=target,
                ))
        return moves

    def _capture_at(self, mover_id: str, cell: int) -> Optional[Capture]:
        """Send the first opposing token on ``cell`` home, scanning in seat order."""
        landing = Track(cell)
        for entry in self.roster:
            if entry.player_id == mover_id:
                continue
            for token in self.pieces[entry.player_id].tokens:
                if token.position == landing:
                    token.send_home()
                    return Capture(player_id=entry.player_id, token_id=token.token_id)
        return None

    def _clear_dice(self) -> None:
        self.dice_value = None
        self.dice_rolled = False

    def _advance_turn(self) -> None:
        if not self.roster:
            return
        self.current_turn_index = (self.current_turn_index + 1) % len(self.roster)
        self._clear_dice()
        self._phase = GamePhase.ROLL_DICE
        self._arm_turn_timer()

    def _finish(self, winner: Optional[str]) -> None:
        self._cancel_turn_timer()
        self._clear_dice()
        self._phase = GamePhase.GAME_OVER
        self.winner = winner
        logger.info("Game over in room %s. Winner: %s", self.room_id, winner)

    def _arm_turn_timer(self) -> None:
        self.turn_started_at = _now_ms()
        self._turn_seq += 1
        if not self.turn_time_limit:
            return
        self.timers.start_timer(
            self.TIMER_TURN,
            self.turn_time_limit,
            GameEventType.TURN_TIMEOUT,
            data={"turn_seq": self._turn_seq},
            player_id=self.current_player_id,
        )

    def _cancel_turn_timer(self) -> None:
        self.timers.cancel_timer(self.TIMER_TURN)

    async def _on_timer_event(self, event: GameEvent) -> None:
        """Force the turn on when the current player runs out of time."""
        if event.type != GameEventType.TURN_TIMEOUT or self.is_over:
            return
        if event.data.get("turn_seq") != self._turn_seq:
            return  # stale: the turn already moved on

        timed_out = self.current_player_id
        logger.info("Turn timeout in room %s for %s", self.room_id, timed_out)
        self._advance_turn()

        if self._on_timeout:
            await self._on_timeout(self, timed_out)


class GameSessionStore:
    """Active game sessions keyed by room code."""

    def __init__(
        self,
        turn_time_limit: Optional[float] = DEFAULT_TURN_TIME_LIMIT,
        rng: Optional[random.Random] = None,
    ):
        self.turn_time_limit = turn_time_limit
        self._rng = rng
        self._sessions: Dict[str, GameSession] = {}

    def create(self, room: Room, on_timeout: Optional[TimeoutCallback] = None) -> GameSession:
        """Create and initialize the session for a started room."""
        self.end(room.room_id)
        session = GameSession.from_room(
            room,
            turn_time_limit=self.turn_time_limit,
            on_timeout=on_timeout,
            rng=self._rng,
        )
        session.initialize()
        self._sessions[room.room_id] = session
        return session

    def get(self, room_id: Optional[str]) -> Optional[GameSession]:
        if not room_id:
            return None
        return self._sessions.get(room_id)

    def require(self, room_id: Optional[str]) -> GameSession:
        session = self.get(room_id)
        if session is None:
            raise GameNotFoundError()
        return session

    def end(self, room_id: str) -> None:
        """Drop a session and cancel its timers."""
        session = self._sessions.pop(room_id, None)
        if session:
            session.close()

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
