"""JSON-RPC 2.0 client over the framed TCP link."""

from __future__ import annotations

import itertools
import json
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Any, Callable

from aprolink.framing import JSONRPC_VERSION, FrameDecoder, ProtocolError, encode_frame

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
TIMEOUT_CODE = -32000
INVALID_RESPONSE_CODE = -32603


class RpcError(Exception):
    """An error reported for a request: by the server, or a local timeout."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.data = data


@dataclass
class _Pending:
    method: str
    on_success: Callable[[Any], None] | None
    on_error: Callable[[RpcError], None] | None
    timer: threading.Timer


def _encode(message: dict) -> bytes:
    return json.dumps(message, separators=(",", ":"), sort_keys=True,
                      ensure_ascii=False).encode("utf-8")


def _to_id(value: Any) -> int:
    if isinstance(value, (bool, int)):
        return int(value)
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            try:
                return int(float(value))
            except ValueError:
                return 0
    return 0


def _error_code(value: Any) -> int:
    if isinstance(value, bool):
        return -1
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return -1


class JsonRpcClient:
    """Sends requests and notifications and dispatches what the server sends.

    Events are delivered to the callables in the ``*_handlers`` lists:
    ``connected_handlers()``, ``disconnected_handlers()``,
    ``socket_error_handlers(exc)``, ``protocol_error_handlers(message)``,
    ``server_command_handlers(cmd, data)``, ``response_handlers(id, result)``
    and ``error_handlers(id, rpc_error)``.
    """

    connect_timeout = 10.0

    def __init__(self) -> None:
        self.connected_handlers: list[Callable[[], None]] = []
        self.disconnected_handlers: list[Callable[[], None]] = []
        self.socket_error_handlers: list[Callable[[OSError], None]] = []
        self.protocol_error_handlers: list[Callable[[str], None]] = []
        self.server_command_handlers: list[Callable[[str, dict], None]] = []
        self.response_handlers: list[Callable[[int, Any], None]] = []
        self.error_handlers: list[Callable[[int, RpcError], None]] = []
        self._sock: socket.socket | None = None
        self._decoder = FrameDecoder()
        self._pending: dict[int, _Pending] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._send_lock = threading.Lock()

    def __enter__(self) -> JsonRpcClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    @staticmethod
    def _emit(handlers: list, *args) -> None:
        for handler in list(handlers):
            handler(*args)

    def connect(self, host: str, port: int) -> None:
        """Connect to the server and start reading; raises OSError on failure."""
        with self._lock:
            if self._sock is not None:
                raise RuntimeError("already connected or connecting")
            self._decoder.clear()
        log.debug("connecting to %s:%s", host, port)
        try:
            sock = socket.create_connection((host, port), timeout=self.connect_timeout)
        except OSError as exc:
            log.warning("socket error: %s", exc)
            self._emit(self.socket_error_handlers, exc)
            raise
        sock.settimeout(None)
        with self._lock:
            self._sock = sock
        threading.Thread(target=self._read_loop, args=(sock,), daemon=True).start()
        log.debug("connected to server")
        self._emit(self.connected_handlers)

    def disconnect(self) -> None:
        """Abort the connection and forget all pending requests."""
        with self._lock:
            sock = self._sock
            self._sock = None
            pending = self._take_pending()
            self._decoder.clear()
        for request in pending:
            request.timer.cancel()
        if sock is not None:
            log.debug("disconnecting")
            self._close(sock)
            self._emit(self.disconnected_handlers)

    def is_connected(self) -> bool:
        with self._lock:
            return self._sock is not None

    def send_request(
        self,
        method: str,
        params: Any = None,
        on_success: Callable[[Any], None] | None = None,
        on_error: Callable[[RpcError], None] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> int:
        """Send a request and return its id; the answer arrives through the callbacks."""
        with self._lock:
            if self._sock is None:
                raise ConnectionError("cannot send request, not connected")
            request_id = next(self._ids)
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method, "id": request_id}
        if params is not None:
            message["params"] = params
        timer = threading.Timer(timeout, self._on_timeout, args=(request_id,))
        timer.daemon = True
        with self._lock:
            self._pending[request_id] = _Pending(method, on_success, on_error, timer)
        timer.start()
        try:
            self._send(_encode(message))
        except BaseException:
            with self._lock:
                self._pending.pop(request_id, None)
            timer.cancel()
            raise
        log.debug("sent request id=%s method=%s", request_id, method)
        return request_id

    def send_notification(self, method: str, params: Any = None) -> None:
        """Send a notification, which gets no response."""
        if not self.is_connected():
            raise ConnectionError("cannot send notification, not connected")
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
        if params is not None:
            message["params"] = params
        log.debug("sent notification method=%s", method)
        self._send(_encode(message))

    def feed(self, data: bytes) -> None:
        """Process bytes received from the server."""
        failure: ProtocolError | None = None
        try:
            frames = self._decoder.feed(data)
        except ProtocolError as exc:
            frames, failure = exc.frames, exc
        for payload in frames:
            self._process_payload(payload)
        if failure is not None:
            log.warning("%s; disconnecting", failure)
            self._emit(self.protocol_error_handlers, str(failure))
            self.disconnect()

    def _send(self, payload: bytes) -> None:
        with self._lock:
            sock = self._sock
        if sock is None:
            raise ConnectionError("not connected")
        with self._send_lock:
            sock.sendall(encode_frame(payload))

    def _take_pending(self) -> list[_Pending]:
        pending = list(self._pending.values())
        self._pending.clear()
        return pending

    @staticmethod
    def _close(sock: socket.socket) -> None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()

    def _read_loop(self, sock: socket.socket) -> None:
        while True:
            try:
                chunk = sock.recv(65536)
            except OSError as exc:
                if self._sock is sock:
                    log.warning("socket error: %s", exc)
                    self._emit(self.socket_error_handlers, exc)
                break
            if not chunk or self._sock is not sock:
                break
            self.feed(chunk)
        self._drop(sock)

    def _drop(self, sock: socket.socket) -> None:
        with self._lock:
            if self._sock is not sock:
                return
            self._sock = None
            pending = self._take_pending()
            self._decoder.clear()
        for request in pending:
            request.timer.cancel()
        self._close(sock)
        log.warning("disconnected from server")
        self._emit(self.disconnected_handlers)

    def _on_timeout(self, request_id: int) -> None:
        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        log.warning("request %s (method: %s) timed out", request_id, pending.method)
        error = RpcError(TIMEOUT_CODE, "Request timed out")
        if pending.on_error is not None:
            pending.on_error(error)
        else:
            self._emit(self.error_handlers, request_id, error)

    def _process_payload(self, payload: bytes) -> None:
        try:
            obj = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._emit(self.protocol_error_handlers, f"JSON parse error: {exc}")
            return
        if not isinstance(obj, dict):
            self._emit(self.protocol_error_handlers, "Received JSON is not an object")
            return
        if obj.get("jsonrpc") != JSONRPC_VERSION:
            self._emit(self.protocol_error_handlers,
                       "Invalid 'jsonrpc' version in received message")
            return

        if obj.get("id") is not None:
            self._handle_response(_to_id(obj["id"]), obj)
        elif "result" in obj:
            self._handle_server_command(obj["result"])
        elif "method" in obj:
            self._handle_server_method(obj)
        else:
            self._emit(self.protocol_error_handlers, "Received unknown JSON-RPC message type")

    def _handle_response(self, request_id: int, obj: dict) -> None:
        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            log.warning("response for unknown or timed out request id=%s", request_id)
            return
        pending.timer.cancel()
        if "result" in obj:
            result = obj["result"]
            if pending.on_success is not None:
                pending.on_success(result)
            self._emit(self.response_handlers, request_id, result)
        elif "error" in obj:
            error_obj = obj["error"] if isinstance(obj["error"], dict) else {}
            message = error_obj.get("message")
            error = RpcError(
                _error_code(error_obj.get("code")),
                message if isinstance(message, str) else "Unknown error",
                error_obj.get("data"),
            )
            log.warning("error for id=%s code=%s message=%s", request_id, error.code, error.message)
            if pending.on_error is not None:
                pending.on_error(error)
            self._emit(self.error_handlers, request_id, error)
        else:
            self._emit(self.protocol_error_handlers, f"Invalid response object for id {request_id}")
            if pending.on_error is not None:
                pending.on_error(RpcError(INVALID_RESPONSE_CODE, "Invalid response object received"))

    def _handle_server_command(self, result: Any) -> None:
        result = result if isinstance(result, dict) else {}
        cmd = result.get("cmd")
        if not isinstance(cmd, str):
            self._emit(self.protocol_error_handlers, "Received malformed server command")
            return
        data = result.get("data")
        log.debug("received server command: %s", cmd)
        self._emit(self.server_command_handlers, cmd, data if isinstance(data, dict) else {})

    def _handle_server_method(self, obj: dict) -> None:
        method = obj["method"] if isinstance(obj["method"], str) else ""
        params = obj.get("params")
        log.debug("received notification/request with method: %s", method)
        if method == "DeviceDiscovered":
            if not isinstance(params, dict):
                self._emit(self.protocol_error_handlers,
                           "Missing or invalid params for DeviceDiscovered notification")
                return
            device, ip_hop = params.get("device"), params.get("ipHop")
            if not isinstance(device, dict) or not isinstance(ip_hop, str):
                self._emit(self.protocol_error_handlers,
                           "Invalid params format for DeviceDiscovered notification")
                return
            log.debug("device discovered at %s: %s", ip_hop, device)
        elif method == "ClientDoCmd" and isinstance(params, dict):
            log.debug("ClientDoCmd cmd=%s data=%s", params.get("cmd"), params.get("data"))