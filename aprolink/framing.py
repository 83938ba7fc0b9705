"""Length-prefixed framing of JSON-RPC messages on the TCP link.

Every frame is a 32-byte big-endian header followed by the payload:
a 4-byte magic number, a 2-byte header version, a 4-byte payload length
and 22 reserved zero bytes.
"""

from __future__ import annotations

import struct

MAGIC_NUMBER = 0x4150524F
HEADER_VERSION = 1
HEADER_LENGTH = 32
JSONRPC_VERSION = "2.0"

_HEADER = struct.Struct(">IHI22x")
_MAX_PAYLOAD = 0xFFFFFFFF


class ProtocolError(Exception):
    """A received frame broke the protocol.

    ``frames`` holds the complete payloads that were decoded from the same
    input before the faulty header was met.
    """

    def __init__(self, message: str, frames: list[bytes] | None = None):
        super().__init__(message)
        self.frames: list[bytes] = frames or []


def encode_frame(payload: bytes) -> bytes:
    """Wrap a payload in a protocol header."""
    if len(payload) > _MAX_PAYLOAD:
        raise ValueError(f"payload of {len(payload)} bytes is too large for one frame")
    return _HEADER.pack(MAGIC_NUMBER, HEADER_VERSION, len(payload)) + bytes(payload)


class FrameDecoder:
    """Collects stream data and splits it into frame payloads."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Add data and return every payload that is now complete.

        Raises ProtocolError on a bad magic number or header version; the
        buffer is then discarded.
        """
        self._buffer.extend(data)
        frames: list[bytes] = []
        while len(self._buffer) >= HEADER_LENGTH:
            magic, version, length = _HEADER.unpack_from(self._buffer)
            if magic != MAGIC_NUMBER:
                self.clear()
                raise ProtocolError("Invalid magic number", frames)
            if version != HEADER_VERSION:
                self.clear()
                raise ProtocolError(f"Unsupported header version: {version}", frames)
            total = HEADER_LENGTH + length
            if len(self._buffer) < total:
                break
            frames.append(bytes(self._buffer[HEADER_LENGTH:total]))
            del self._buffer[:total]
        return frames

    def clear(self) -> None:
        """Drop any buffered partial data."""
        self._buffer.clear()