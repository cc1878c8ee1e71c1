"""Message dispatcher between client connections and the room/game state.

Each inbound message type maps to one handler. Handlers check that the
caller is where the action needs them to be, delegate to the RoomRegistry
or the GameSession, and broadcast the result merged with a fresh snapshot.
Any ``GameError`` becomes an ERROR reply to the sender only.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Union

from server.errors import (
    GameError, GameNotFoundError, NotHostError, NotInRoomError,
    SupersededConnectionError, UnknownMessageTypeError,
)
from server.events import GameEvent, GameEventType
from server.identity import IdentityTracker
from server.protocol import (
    ClientMessageType, Message,
    chat_message, connected_message, dice_rolled_message, error_message,
    game_started_message, game_state_message, left_room_message,
    parse_chat_message, parse_create_room_message, parse_join_room_message,
    parse_move_piece_message, piece_moved_message, player_disconnected_message,
    player_joined_message, player_left_message, reconnected_message,
    room_created_message, room_joined_message, room_state_message,
)
from server.rooms import DeliverableHandle, RoomRegistry
from server.session import GameSession, GameSessionStore
from server.timers import TimerManager

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 30.0
ROOM_CLOSED = "ROOM_CLOSED"
TURN_TIMEOUT = "TURN_TIMEOUT"


@dataclass(eq=False)
class ClientContext:
    """Per-connection state: who is on the other end and where they are."""
    address: str
    player_id: str
    handle: DeliverableHandle
    room_id: Optional[str] = None
    reconnected: bool = False
    connected_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def send(self, message: Message) -> bool:
        return self.handle.try_send(message.to_json())


Handler = Callable[[ClientContext, Dict], Awaitable[None]]


class SessionGateway:
    """Routes client actions to RoomRegistry and GameSessionStore."""

    def __init__(
        self,
        rooms: RoomRegistry,
        sessions: GameSessionStore,
        identities: IdentityTracker,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        max_chat_length: int = 500,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.rooms = rooms
        self.sessions = sessions
        self.identities = identities
        self.grace_seconds = grace_seconds
        self.max_chat_length = max_chat_length
        self._new_id = id_factory

        # player_id -> the connection currently speaking for that identity
        self._live: Dict[str, ClientContext] = {}
        self.timers = TimerManager(self._on_timer_event)

        self._handlers: Dict[str, Handler] = {
            ClientMessageType.CREATE_ROOM.value: self._handle_create_room,
            ClientMessageType.JOIN_ROOM.value: self._handle_join_room,
            ClientMessageType.LEAVE_ROOM.value: self._handle_leave_room,
            ClientMessageType.START_GAME.value: self._handle_start_game,
            ClientMessageType.ROLL_DICE.value: self._handle_roll_dice,
            ClientMessageType.MOVE_PIECE.value: self._handle_move_piece,
            ClientMessageType.CHAT.value: self._handle_chat,
        }

    # --- Connection lifecycle ---

    def connect(self, address: str, handle: DeliverableHandle) -> ClientContext:
        """Register a new connection, resuming the address's identity if known."""
        binding = self.identities.resolve(address)

        if binding is None:
            player_id = self._new_id()
            self.identities.bind(address, player_id)
            ctx = ClientContext(address=address, player_id=player_id, handle=handle)
            self._live[player_id] = ctx
            ctx.send(connected_message(player_id))
            logger.info("New connection from %s (%s)", address, player_id)
            return ctx

        self.timers.cancel_timer(self._grace_timer_id(address))
        player_id = binding.player_id
        room_id = binding.room_id
        if room_id and not self.rooms.attach_handle(room_id, player_id, handle):
            # Room closed or we were removed while away
            room_id = None
            self.identities.rebind_room(address, None)

        ctx = ClientContext(
            address=address,
            player_id=player_id,
            handle=handle,
            room_id=room_id,
            reconnected=True,
        )
        self._live[player_id] = ctx
        logger.info("Reconnection from %s (%s), room %s", address, player_id, room_id)

        ctx.send(reconnected_message(player_id, room_id))
        if room_id:
            ctx.send(room_state_message(self.rooms.snapshot(room_id)))
            session = self.sessions.get(room_id)
            if session:
                ctx.send(game_state_message(session.snapshot()))
        return ctx

    async def disconnect(self, ctx: ClientContext) -> None:
        """Handle a closed connection. Identity cleanup waits for the grace period."""
        if self._live.get(ctx.player_id) is not ctx:
            # A newer connection from the same address took over
            return
        del self._live[ctx.player_id]
        logger.info("Disconnected: %s (%s)", ctx.address, ctx.player_id)

        room = self.rooms.get(ctx.room_id)
        if room:
            session = self.sessions.get(room.room_id)
            participant = room.find(ctx.player_id)
            if session and not session.is_over and session.has_player(ctx.player_id):
                self._drop_from_game(session, ctx.player_id)
                self.rooms.detach_handle(room.room_id, ctx.player_id)
            elif not room.game_started and participant is not None:
                self._remove_from_room(room.room_id, ctx.player_id)
                self.identities.rebind_room(ctx.address, None)
            else:
                self.rooms.detach_handle(room.room_id, ctx.player_id)

        self.timers.start_timer(
            self._grace_timer_id(ctx.address),
            self.grace_seconds,
            GameEventType.RECONNECT_GRACE_EXPIRED,
            data={"address": ctx.address},
            player_id=ctx.player_id,
        )

    def close(self) -> None:
        """Cancel pending grace timers and every game's turn timer."""
        self.timers.cancel_all()
        self.sessions.close_all()

    # --- Dispatch ---

    async def handle_message(self, ctx: ClientContext, raw: Union[str, bytes]) -> None:
        """Parse and dispatch one inbound frame. Never raises for client input."""
        try:
            if self._live.get(ctx.player_id) is not ctx:
                raise SupersededConnectionError()
            msg = Message.from_json(raw)
            handler = self._handlers.get(msg.type)
            if handler is None:
                raise UnknownMessageTypeError(f"Unknown message type: {msg.type}")
            await handler(ctx, msg.data)
        except GameError as e:
            logger.debug("Rejected action from %s: %s", ctx.player_id, e.message)
            ctx.send(error_message(e.code, e.message))
        except Exception:
            logger.exception("Unhandled error processing message from %s", ctx.player_id)
            ctx.send(error_message("INTERNAL_ERROR", "Internal server error"))

    # --- Room handlers ---

    async def _handle_create_room(self, ctx: ClientContext, data: Dict) -> None:
        parsed = parse_create_room_message(data)
        await self._leave_current_room(ctx)

        room = self.rooms.create_room(ctx.player_id, parsed["player_name"], ctx.address, ctx.handle)
        self._set_room(ctx, room.room_id)
        ctx.send(room_created_message(self.rooms.snapshot(room.room_id)))

    async def _handle_join_room(self, ctx: ClientContext, data: Dict) -> None:
        parsed = parse_join_room_message(data)
        room_id = parsed["room_id"]
        # Fail before leaving the current room
        self.rooms.require(room_id)
        rejoining = ctx.room_id == room_id
        if not rejoining:
            await self._leave_current_room(ctx)

        result = self.rooms.join_room(room_id, ctx.player_id, parsed["player_name"], ctx.address, ctx.handle)
        self._set_room(ctx, room_id)

        room_view = self.rooms.snapshot(room_id)
        ctx.send(room_joined_message(room_view, spectator=result.spectator))
        if not rejoining:
            self.rooms.broadcast(room_id, player_joined_message(ctx.player_id, room_view), exclude=ctx.player_id)

        session = self.sessions.get(room_id)
        if result.room.game_started and session:
            ctx.send(game_state_message(session.snapshot()))

    async def _handle_leave_room(self, ctx: ClientContext, data: Dict) -> None:
        await self._leave_current_room(ctx)
        ctx.send(left_room_message())

    async def _handle_start_game(self, ctx: ClientContext, data: Dict) -> None:
        room = self._require_room(ctx)
        if room.host_id != ctx.player_id:
            raise NotHostError()

        self.rooms.start_game(room.room_id)
        session = self.sessions.create(room, on_timeout=self._on_turn_timeout)
        self.rooms.broadcast(room.room_id, game_started_message(session.snapshot()))

    # --- Game handlers ---

    async def _handle_roll_dice(self, ctx: ClientContext, data: Dict) -> None:
        session = self._require_session(ctx)
        result = session.roll_dice(ctx.player_id)

        self.rooms.broadcast(session.room_id, dice_rolled_message(
            player_id=ctx.player_id,
            dice_value=result.dice_value,
            valid_moves=[m.to_dict() for m in result.valid_moves],
            skipped=result.skipped,
            game_view=session.snapshot()
        ))

    async def _handle_move_piece(self, ctx: ClientContext, data: Dict) -> None:
        session = self._require_session(ctx)
        parsed = parse_move_piece_message(data)
        result = session.move_piece(ctx.player_id, parsed["token_id"])

        self.rooms.broadcast(session.room_id, piece_moved_message(
            player_id=ctx.player_id,
            token_id=result.token_id,
            captured=result.captured.to_dict() if result.captured else None,
            game_over=result.game_over,
            winner=result.winner,
            game_view=session.snapshot()
        ))

    async def _handle_chat(self, ctx: ClientContext, data: Dict) -> None:
        room = self._require_room(ctx)
        participant = room.find(ctx.player_id)
        if participant is None:
            raise NotInRoomError()
        parsed = parse_chat_message(data, self.max_chat_length)

        self.rooms.broadcast(room.room_id, chat_message(
            player_id=ctx.player_id,
            player_name=participant.name,
            text=parsed["text"],
            timestamp=int(time.time() * 1000)
        ))

    # --- Helpers ---

    def _require_room(self, ctx: ClientContext):
        room = self.rooms.get(ctx.room_id)
        if room is None:
            raise NotInRoomError()
        return room

    def _require_session(self, ctx: ClientContext) -> GameSession:
        if not ctx.room_id:
            raise GameNotFoundError()
        return self.sessions.require(ctx.room_id)

    def _set_room(self, ctx: ClientContext, room_id: Optional[str]) -> None:
        ctx.room_id = room_id
        self.identities.rebind_room(ctx.address, room_id)

    async def _leave_current_room(self, ctx: ClientContext) -> None:
        room_id = ctx.room_id
        if not room_id:
            return
        self._set_room(ctx, None)
        if self.rooms.get(room_id) is None:
            return

        session = self.sessions.get(room_id)
        if session and not session.is_over and session.has_player(ctx.player_id):
            self._drop_from_game(session, ctx.player_id)
        self._remove_from_room(room_id, ctx.player_id)

    def _drop_from_game(self, session: GameSession, player_id: str) -> None:
        result = session.on_disconnect(player_id)
        self.rooms.broadcast(session.room_id, player_disconnected_message(
            player_id=player_id,
            game_over=result.game_over,
            winner=result.winner,
            game_view=session.snapshot()
        ))
        if result.game_over:
            logger.info("Game ended due to disconnection in room %s", session.room_id)

    def _remove_from_room(self, room_id: str, player_id: str) -> None:
        result = self.rooms.remove_participant(room_id, player_id)
        if result.room_closed:
            self.sessions.end(room_id)
            for spectator in result.orphaned_spectators:
                if spectator.handle is not None:
                    spectator.handle.try_send(left_room_message(ROOM_CLOSED).to_json())
                self.identities.rebind_room(spectator.address, None)
                orphan_ctx = self._live.get(spectator.player_id)
                if orphan_ctx is not None:
                    orphan_ctx.room_id = None
            return

        if result.removed is not None:
            self.rooms.broadcast(room_id, player_left_message(player_id, self.rooms.snapshot(room_id)))

    async def _on_turn_timeout(self, session: GameSession, timed_out_player_id: str) -> None:
        self.rooms.broadcast(session.room_id, game_state_message(
            session.snapshot(),
            reason=TURN_TIMEOUT,
            timedOutPlayerId=timed_out_player_id
        ))

    # --- Grace period ---

    @staticmethod
    def _grace_timer_id(address: str) -> str:
        return f"grace:{address}"

    async def _on_timer_event(self, event: GameEvent) -> None:
        if event.type != GameEventType.RECONNECT_GRACE_EXPIRED:
            return

        address = event.data["address"]
        player_id = event.player_id
        binding = self.identities.resolve(address)
        if binding is None or binding.player_id != player_id or player_id in self._live:
            return

        if binding.room_id and self.rooms.get(binding.room_id):
            self._remove_from_room(binding.room_id, player_id)
        self.identities.release(address)
        logger.info("Cleaned up identity for %s (%s)", address, player_id)
