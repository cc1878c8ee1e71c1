"""Shared fixtures and utilities for integration tests."""

import json
import socket
import subprocess
import sys
import time

import pytest
from websockets.sync.client import connect


def wait_for_server(port: int, timeout: float = 5.0) -> bool:
    """Wait for server to start accepting connections.

    Returns True if server is ready, False if timeout.
    """
    start_time = time.time()
    while time.time() - start_time < timeout:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.settimeout(0.5)
            result = sock.connect_ex(('127.0.0.1', port))
            sock.close()
            if result == 0:
                return True
        except OSError:
            pass
        time.sleep(0.1)
    return False


def create_server_fixture(port: int):
    """Factory function to create a server fixture for a given port."""
    @pytest.fixture
    def server_fixture():
        # Capture stderr to diagnose startup failures
        proc = subprocess.Popen(
            [sys.executable, "-m", "server.main", "--host", "127.0.0.1", "--port", str(port)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE
        )

        if not wait_for_server(port, timeout=15.0):
            poll_result = proc.poll()
            if poll_result is not None:
                _, stderr = proc.communicate(timeout=2)
                stderr_text = stderr.decode().strip() if stderr else "No stderr"
                error_msg = f"Server process exited with code {poll_result}. stderr: {stderr_text}"
            else:
                error_msg = "Server did not start accepting connections in time"
                proc.terminate()
                try:
                    proc.wait(timeout=2)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait()
            pytest.fail(f"Server failed to start on port {port}: {error_msg}")

        yield port

        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    return server_fixture


server_port_18765 = create_server_fixture(18765)
server_port_18766 = create_server_fixture(18766)


class WireClient:
    """Blocking JSON client. ``address`` is sent as X-Forwarded-For so that
    several clients on one machine get separate identities."""

    def __init__(self, port: int, address: str):
        self.address = address
        self.ws = connect(
            f"ws://127.0.0.1:{port}",
            additional_headers={"X-Forwarded-For": address},
            open_timeout=5,
        )

    def send(self, msg_type: str, **data) -> None:
        self.ws.send(json.dumps({"type": msg_type, **data}))

    def recv(self, timeout: float = 5.0) -> dict:
        return json.loads(self.ws.recv(timeout=timeout))

    def recv_until(self, msg_type: str, timeout: float = 5.0) -> dict:
        """Read frames until one of ``msg_type`` arrives."""
        deadline = time.time() + timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise TimeoutError(f"No {msg_type} within {timeout}s")
            msg = self.recv(timeout=remaining)
            if msg["type"] == msg_type:
                return msg

    def close(self) -> None:
        self.ws.close()


@pytest.fixture
def wire_client():
    """Factory for connected clients, closed at teardown."""
    clients = []

    def _connect(port: int, address: str) -> WireClient:
        client = WireClient(port, address)
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        client.close()
