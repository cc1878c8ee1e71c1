"""
WebSocket server entry point for AshtaPashaka multiplayer.

This module provides:
- WebSocket server using the websockets library
- Client address resolution (proxy aware) for identity tracking
- Wiring of RoomRegistry, GameSessionStore and SessionGateway
- Logging setup and command line interface
"""

import argparse
import asyncio
import logging
import signal
import socket
from typing import Optional

from rich.logging import RichHandler
from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from game.config_loader import ConfigLoader
from server.connection import WebSocketHandle
from server.gateway import SessionGateway
from server.identity import IdentityTracker
from server.rooms import RoomRegistry
from server.session import GameSessionStore
from version import VERSION

# Suppress websockets library errors from TCP probes (health checks that don't
# complete the WebSocket handshake).
logging.getLogger("websockets").setLevel(logging.CRITICAL)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3001


def client_address(websocket: ServerConnection) -> str:
    """Resolve the client address, honouring X-Forwarded-For from a proxy."""
    request = websocket.request
    if request is not None:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

    remote = websocket.remote_address
    if isinstance(remote, (tuple, list)) and remote:
        return str(remote[0])
    return str(remote)


class GameServer:
    """
    WebSocket game server hosting any number of rooms.

    Handles:
    - Client connections and disconnections
    - Handing each frame to the SessionGateway
    - Graceful shutdown
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        config: Optional[ConfigLoader] = None
    ):
        self.host = host
        self.port = port
        self.config = config or ConfigLoader()

        self.identities = IdentityTracker()
        self.rooms = RoomRegistry(
            max_players=self.config.max_players,
            min_players=self.config.min_players,
            code_length=self.config.room_code_length,
        )
        self.sessions = GameSessionStore(turn_time_limit=self.config.turn_time_limit_seconds)
        self.gateway = SessionGateway(
            rooms=self.rooms,
            sessions=self.sessions,
            identities=self.identities,
            grace_seconds=self.config.reconnect_grace_seconds,
            max_chat_length=self.config.max_chat_length,
        )

        self._server = None
        self._stop: Optional[asyncio.Future] = None

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when started with port 0)."""
        if self._server is None:
            return self.port
        return self._server.sockets[0].getsockname()[1]

    async def start(self):
        """Start listening. Returns once the socket is bound."""
        self._server = await serve(self.handle_connection, self.host, self.port, reuse_address=True)
        logger.info("AshtaPashaka server v%s running on ws://%s:%d", VERSION, self.host, self.bound_port)

    async def serve_forever(self):
        """Run until ``stop`` is called or the process gets SIGINT/SIGTERM."""
        await self.start()
        loop = asyncio.get_running_loop()
        self._stop = loop.create_future()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass
        await self._stop
        await self.shutdown()

    def stop(self):
        if self._stop is not None and not self._stop.done():
            self._stop.set_result(None)

    async def shutdown(self):
        """Close every connection and cancel pending timers."""
        logger.info("Shutting down server...")
        self.gateway.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Server closed")

    async def handle_connection(self, websocket: ServerConnection):
        """Handle a new WebSocket connection."""
        address = client_address(websocket)
        handle = WebSocketHandle(
            websocket,
            queue_size=self.config.send_queue_size,
            send_timeout=self.config.send_timeout_seconds,
        )
        handle.start()
        ctx = self.gateway.connect(address, handle)

        try:
            async for message in websocket:
                await self.gateway.handle_message(ctx, message)
        except ConnectionClosed:
            pass
        finally:
            await self.gateway.disconnect(ctx)
            await handle.close()


def check_port_available(host: str, port: int) -> bool:
    """Check if a port is available for binding."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host if host != "0.0.0.0" else "127.0.0.1", port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="AshtaPashaka Multiplayer Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to bind to")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, ...)")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    if not check_port_available(args.host, args.port):
        logger.error("Port %d is already in use. Try --port %d", args.port, args.port + 1)
        return 1

    server = GameServer(host=args.host, port=args.port)
    asyncio.run(server.serve_forever())
    return 0


if __name__ == "__main__":
    exit(main())
