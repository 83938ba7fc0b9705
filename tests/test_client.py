import json
import socket
import threading

import pytest

from aprolink.client import JsonRpcClient, RpcError
from aprolink.framing import HEADER_LENGTH, encode_frame


def _frame(obj) -> bytes:
    return encode_frame(json.dumps(obj).encode("utf-8"))


def _recv_exact(conn, size):
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        assert chunk, "connection closed early"
        data += chunk
    return data


def _read_frame(conn) -> bytes:
    header = _recv_exact(conn, HEADER_LENGTH)
    return _recv_exact(conn, int.from_bytes(header[6:10], "big"))


@pytest.fixture
def link():
    listener = socket.create_server(("127.0.0.1", 0))
    client = JsonRpcClient()
    client.connect("127.0.0.1", listener.getsockname()[1])
    conn, _ = listener.accept()
    conn.settimeout(2)
    yield client, conn
    client.disconnect()
    conn.close()
    listener.close()


def _collect(handlers):
    seen, done = [], threading.Event()

    def record(*args):
        seen.append(args)
        done.set()

    handlers.append(record)
    return seen, done


def test_server_command_dispatched():
    client = JsonRpcClient()
    seen, _ = _collect(client.server_command_handlers)
    client.feed(_frame({"jsonrpc": "2.0", "id": None,
                        "result": {"cmd": "LogOut", "data": {"a": 1}}}))
    assert seen == [("LogOut", {"a": 1})]


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"jsonrpc": "2.0", "id": None, "result": {"data": {}}},
         "Received malformed server command"),
        ([1, 2], "Received JSON is not an object"),
        ({"jsonrpc": "1.0", "method": "x"}, "Invalid 'jsonrpc' version in received message"),
        ({"jsonrpc": "2.0"}, "Received unknown JSON-RPC message type"),
        ({"jsonrpc": "2.0", "method": "DeviceDiscovered"},
         "Missing or invalid params for DeviceDiscovered notification"),
        ({"jsonrpc": "2.0", "method": "DeviceDiscovered", "params": {"device": {}}},
         "Invalid params format for DeviceDiscovered notification"),
    ],
)
def test_protocol_errors(payload, message):
    client = JsonRpcClient()
    seen, _ = _collect(client.protocol_error_handlers)
    client.feed(_frame(payload))
    assert seen == [(message,)]


def test_valid_device_discovered_raises_no_error():
    client = JsonRpcClient()
    seen, _ = _collect(client.protocol_error_handlers)
    client.feed(_frame({"jsonrpc": "2.0", "method": "DeviceDiscovered",
                        "params": {"device": {"sn": "X"}, "ipHop": "10.0.0.1:0"}}))
    assert seen == []


def test_json_parse_error():
    client = JsonRpcClient()
    seen, _ = _collect(client.protocol_error_handlers)
    client.feed(encode_frame(b"{not json"))
    assert seen[0][0].startswith("JSON parse error")


def test_bad_magic_reports_protocol_error():
    client = JsonRpcClient()
    seen, _ = _collect(client.protocol_error_handlers)
    client.feed(b"XXXX" + bytes(28))
    assert seen == [("Invalid magic number",)]
    assert client.is_connected() is False


def test_send_without_connection_raises():
    client = JsonRpcClient()
    with pytest.raises(ConnectionError):
        client.send_request("Ping")
    with pytest.raises(ConnectionError):
        client.send_notification("Ping")


def test_request_wire_format_and_ids(link):
    client, conn = link
    first = client.send_request("Ping", {"x": 1})
    assert _read_frame(conn) == b'{"id":1,"jsonrpc":"2.0","method":"Ping","params":{"x":1}}'
    second = client.send_request("Ping")
    assert json.loads(_read_frame(conn)) == {"id": second, "jsonrpc": "2.0", "method": "Ping"}
    assert second == first + 1


def test_notification_has_no_id(link):
    client, conn = link
    client.send_notification("LogEvent", {"level": "info"})
    message = json.loads(_read_frame(conn))
    assert message == {"jsonrpc": "2.0", "method": "LogEvent", "params": {"level": "info"}}


def test_success_response(link):
    client, conn = link
    got, done = [], threading.Event()
    responses, _ = _collect(client.response_handlers)
    request_id = client.send_request("GetSKTInfo", {}, on_success=lambda r: (got.append(r), done.set()))
    _read_frame(conn)
    conn.sendall(_frame({"jsonrpc": "2.0", "id": request_id, "result": {"ok": True}}))
    assert done.wait(2)
    assert got == [{"ok": True}]
    assert responses == [(request_id, {"ok": True})]


def test_error_response(link):
    client, conn = link
    got, done = [], threading.Event()
    errors, errors_done = _collect(client.error_handlers)
    request_id = client.send_request("Nope", on_error=lambda e: (got.append(e), done.set()))
    _read_frame(conn)
    conn.sendall(_frame({"jsonrpc": "2.0", "id": request_id,
                         "error": {"code": -32601, "message": "Method not found"}}))
    assert done.wait(2) and errors_done.wait(2)
    assert (got[0].code, got[0].message, got[0].data) == (-32601, "Method not found", None)
    assert errors[0][0] == request_id


def test_error_response_defaults(link):
    client, conn = link
    got, done = [], threading.Event()
    request_id = client.send_request("Nope", on_error=lambda e: (got.append(e), done.set()))
    _read_frame(conn)
    conn.sendall(_frame({"jsonrpc": "2.0", "id": request_id, "error": {}}))
    assert done.wait(2)
    assert (got[0].code, got[0].message) == (-1, "Unknown error")


def test_invalid_response_object(link):
    client, conn = link
    got, done = [], threading.Event()
    protocol, _ = _collect(client.protocol_error_handlers)
    request_id = client.send_request("X", on_error=lambda e: (got.append(e), done.set()))
    _read_frame(conn)
    conn.sendall(_frame({"jsonrpc": "2.0", "id": request_id}))
    assert done.wait(2)
    assert got[0].code == -32603
    assert protocol == [(f"Invalid response object for id {request_id}",)]


def test_timeout_calls_error_callback(link):
    client, _ = link
    got, done = [], threading.Event()
    client.send_request("Slow", on_error=lambda e: (got.append(e), done.set()), timeout=0.05)
    assert done.wait(2)
    assert isinstance(got[0], RpcError)
    assert (got[0].code, got[0].message) == (-32000, "Request timed out")


def test_timeout_without_callback_emits_error(link):
    client, _ = link
    errors, done = _collect(client.error_handlers)
    request_id = client.send_request("Slow", timeout=0.05)
    assert done.wait(2)
    assert errors[0][0] == request_id
    assert errors[0][1].code == -32000


def test_server_close_disconnects(link):
    client, conn = link
    seen, done = _collect(client.disconnected_handlers)
    conn.shutdown(socket.SHUT_RDWR)
    conn.close()
    assert done.wait(2)
    assert client.is_connected() is False
    assert seen == [()]


def test_disconnect_forgets_pending(link):
    client, conn = link
    got = []
    client.send_request("X", on_success=got.append, on_error=got.append, timeout=0.05)
    client.disconnect()
    assert client.is_connected() is False
    threading.Event().wait(0.2)
    assert got == []


def test_connect_twice_raises(link):
    client, _ = link
    with pytest.raises(RuntimeError):
        client.connect("127.0.0.1", 1)


def test_connect_failure_reports_socket_error():
    listener = socket.create_server(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    listener.close()
    client = JsonRpcClient()
    seen, _ = _collect(client.socket_error_handlers)
    with pytest.raises(OSError):
        client.connect("127.0.0.1", port)
    assert len(seen) == 1
    assert client.is_connected() is False