"""TCP endpoint that answers report requests from the external licence tool."""

from __future__ import annotations

import socket
import socketserver
import struct
import threading
from dataclasses import dataclass
from typing import Callable

DEFAULT_PORT = 2030
REPORT_COMMAND = "GetReport"

_HEAD = struct.Struct("<16sI")
_COMMAND_SIZE = 16


@dataclass
class CommandHead:
    """Fixed header in front of every request: a command name and the payload length."""

    command: str = ""
    data_len: int = 0

    def pack(self) -> bytes:
        raw = self.command.encode("utf-8")
        if len(raw) > _COMMAND_SIZE:
            raise ValueError(f"command holds at most {_COMMAND_SIZE} bytes, got {len(raw)}")
        try:
            return _HEAD.pack(raw, self.data_len)
        except struct.error as exc:
            raise ValueError(f"data_len out of range: {exc}") from exc

    @classmethod
    def unpack(cls, data: bytes) -> CommandHead:
        if len(data) < _HEAD.size:
            raise ValueError(f"command head needs {_HEAD.size} bytes, got {len(data)}")
        raw, data_len = _HEAD.unpack_from(bytes(data))
        command = raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")
        return cls(command=command, data_len=data_len)


def _recv_exact(conn: socket.socket, size: int) -> bytes | None:
    chunks = []
    remaining = size
    while remaining:
        try:
            chunk = conn.recv(min(remaining, 65536))
        except OSError:
            return None
        if not chunk:
            return None
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class _Handler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        self.server.owner._serve_client(self.request, self.client_address)


class _Server(socketserver.ThreadingTCPServer):
    daemon_threads = True
    block_on_close = False
    allow_reuse_address = True

    def __init__(self, address, owner: ExternalServer):
        self.owner = owner
        super().__init__(address, _Handler)


class ExternalServer:
    """Listens for one-shot requests and reports "GetReport" ones to a callback.

    Each client sends a ``CommandHead`` followed by ``data_len`` bytes. When the
    trimmed payload reads "GetReport" the callback receives the client socket,
    so it can write its report back; the connection is closed afterwards.
    """

    read_timeout = 5.0

    def __init__(self, on_report_requested: Callable[[socket.socket], None]):
        self._on_report_requested = on_report_requested
        self._server: _Server | None = None
        self._thread: threading.Thread | None = None
        self._clients: dict[socket.socket, str] = {}
        self._lock = threading.Lock()

    @property
    def address(self) -> tuple[str, int]:
        """The bound (host, port) of the listening socket."""
        if self._server is None:
            raise RuntimeError("server is not listening")
        host, port = self._server.server_address[:2]
        return host, port

    def start(self, ip: str = "127.0.0.1", port: int = DEFAULT_PORT) -> None:
        """Start listening; raises OSError when the address cannot be bound."""
        if self._server is not None:
            raise RuntimeError("server is already listening")
        host = "127.0.0.1" if ip in ("", "127.0.0.1") else ip
        self._server = _Server((host, port), self)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Disconnect all clients and stop listening."""
        with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for conn in clients:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> ExternalServer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _serve_client(self, conn: socket.socket, client_address) -> None:
        client_id = f"{client_address[0]}:{client_address[1]}"
        with self._lock:
            self._clients[conn] = client_id
        try:
            conn.settimeout(self.read_timeout)
            head_bytes = _recv_exact(conn, _HEAD.size)
            if head_bytes is None:
                return
            head = CommandHead.unpack(head_bytes)
            body = _recv_exact(conn, head.data_len)
            if body is None:
                return
            message = body.decode("utf-8", errors="replace").strip()
            if message == REPORT_COMMAND:
                self._on_report_requested(conn)
        finally:
            with self._lock:
                self._clients.pop(conn, None)