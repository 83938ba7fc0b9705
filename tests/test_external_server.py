import socket

import pytest

from aprolink.external_server import CommandHead, ExternalServer


def _request(message: bytes) -> bytes:
    return CommandHead(command="cmd", data_len=len(message)).pack() + message


def _exchange(address, payload: bytes) -> bytes:
    with socket.create_connection(address, timeout=5) as conn:
        conn.sendall(payload)
        conn.shutdown(socket.SHUT_WR)
        chunks = []
        while True:
            chunk = conn.recv(4096)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)


@pytest.fixture
def server():
    calls = []

    def on_report(conn):
        calls.append(conn)
        conn.sendall(b"REPORT")

    srv = ExternalServer(on_report)
    srv.start("127.0.0.1", 0)
    yield srv, calls
    srv.stop()


def test_command_head_round_trip():
    head = CommandHead(command="GetReport", data_len=9)
    assert CommandHead.unpack(head.pack()) == head


def test_command_head_size():
    assert len(CommandHead().pack()) == 20


def test_command_head_rejects_long_command():
    with pytest.raises(ValueError):
        CommandHead(command="x" * 17).pack()


def test_command_head_unpack_short_raises():
    with pytest.raises(ValueError):
        CommandHead.unpack(b"\0" * 5)


def test_get_report_invokes_callback(server):
    srv, calls = server
    reply = _exchange(srv.address, _request(b"GetReport"))
    assert reply == b"REPORT"
    assert len(calls) == 1


def test_message_is_trimmed(server):
    srv, calls = server
    assert _exchange(srv.address, _request(b"  GetReport\n")) == b"REPORT"
    assert len(calls) == 1


def test_other_message_is_ignored(server):
    srv, calls = server
    assert _exchange(srv.address, _request(b"Other")) == b""
    assert calls == []


def test_short_header_closes_connection(server):
    srv, calls = server
    assert _exchange(srv.address, b"abc") == b""
    assert calls == []


def test_short_body_closes_connection(server):
    srv, calls = server
    head = CommandHead(command="cmd", data_len=50).pack()
    assert _exchange(srv.address, head + b"GetReport") == b""
    assert calls == []


def test_start_twice_raises(server):
    srv, _ = server
    with pytest.raises(RuntimeError):
        srv.start("127.0.0.1", 0)


def test_address_before_start_raises():
    with pytest.raises(RuntimeError):
        ExternalServer(lambda conn: None).address


def test_stop_closes_listener():
    srv = ExternalServer(lambda conn: None)
    srv.start("", 0)
    address = srv.address
    srv.stop()
    with pytest.raises(OSError):
        socket.create_connection(address, timeout=1)