import pytest

from aprolink.framing import (
    HEADER_LENGTH,
    FrameDecoder,
    ProtocolError,
    encode_frame,
)


def _header(magic: bytes, version: bytes, length: int) -> bytes:
    return magic + version + length.to_bytes(4, "big") + bytes(22)


def test_encode_frame_header_layout():
    frame = encode_frame(b"{}")
    assert frame[:4] == b"APRO"
    assert frame[4:6] == b"\x00\x01"
    assert frame[6:10] == b"\x00\x00\x00\x02"
    assert frame[10:HEADER_LENGTH] == bytes(22)
    assert frame[HEADER_LENGTH:] == b"{}"
    assert len(frame) == HEADER_LENGTH + 2


def test_round_trip_single_frame():
    payload = b'{"jsonrpc":"2.0","method":"x"}'
    assert FrameDecoder().feed(encode_frame(payload)) == [payload]


def test_empty_payload_round_trip():
    assert FrameDecoder().feed(encode_frame(b"")) == [b""]


def test_byte_by_byte_feed():
    payload = b"hello world"
    decoder = FrameDecoder()
    frames = []
    for byte in encode_frame(payload):
        frames.extend(decoder.feed(bytes([byte])))
    assert frames == [payload]
    assert len(decoder) == 0


def test_multiple_frames_in_one_chunk_and_partial_tail():
    first, second, third = b"a", b"bb", b"ccc"
    stream = encode_frame(first) + encode_frame(second) + encode_frame(third)
    decoder = FrameDecoder()
    assert decoder.feed(stream[:-1]) == [first, second]
    assert decoder.feed(stream[-1:]) == [third]


def test_short_header_waits():
    decoder = FrameDecoder()
    assert decoder.feed(encode_frame(b"xyz")[: HEADER_LENGTH - 1]) == []
    assert len(decoder) == HEADER_LENGTH - 1


def test_bad_magic_raises_and_clears():
    decoder = FrameDecoder()
    with pytest.raises(ProtocolError) as info:
        decoder.feed(_header(b"XXXX", b"\x00\x01", 0))
    assert str(info.value) == "Invalid magic number"
    assert len(decoder) == 0
    assert decoder.feed(encode_frame(b"ok")) == [b"ok"]


def test_bad_version_raises():
    decoder = FrameDecoder()
    with pytest.raises(ProtocolError) as info:
        decoder.feed(_header(b"APRO", b"\x00\x02", 0))
    assert str(info.value) == "Unsupported header version: 2"


def test_frames_before_error_are_kept():
    decoder = FrameDecoder()
    stream = encode_frame(b"one") + _header(b"ZZZZ", b"\x00\x01", 0)
    with pytest.raises(ProtocolError) as info:
        decoder.feed(stream)
    assert info.value.frames == [b"one"]


def test_clear_drops_partial_frame():
    decoder = FrameDecoder()
    decoder.feed(encode_frame(b"partial")[:40])
    decoder.clear()
    assert len(decoder) == 0
    assert decoder.feed(encode_frame(b"next")) == [b"next"]