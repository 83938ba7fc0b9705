# aprolink

`aprolink` speaks the protocol that drives a chip-programming station over
TCP. It uses only the standard library.

## What is in it

- `aprolink.framing` handles the wire framing.
  - Every message is a 32-byte header followed by the payload. The header holds the following big-endian fields:
    - the magic number `0x4150524F` ("APRO"),
    - header version `1`,
    - the payload length,
    - 22 reserved zero bytes.
  - `encode_frame` builds a frame.
  - `FrameDecoder.feed` returns the payloads that are complete.
  - `FrameDecoder.feed` raises `ProtocolError` on a bad magic number or header version. The error's `frames` attribute holds the payloads that were decoded before the faulty header.
- `aprolink.client.JsonRpcClient` is a JSON-RPC 2.0 client over that framing.
  - `connect(host, port)` opens the connection.
  - `send_request` sends a request and `send_notification` sends a notification. Both raise `ConnectionError` when the client is not connected.
  - Responses are matched to pending requests by id.
  - Errors reach the `on_error` callback as `RpcError`. This includes the local timeout, which has code `-32000`.
  - Events go to the callables in the client's `*_handlers` lists. For example, `server_command_handlers` receives `(cmd, data)` for commands the server pushes unprompted.
- `aprolink.icd` holds the fixed-size, little-endian packet layouts of the device link. Each packet class has `pack()` and `unpack(data)`. The layouts cover:
  - management packets: link scan, heartbeat, device info,
  - command packets and their completion packets,
  - interrupt, data and pass-through packets.

  The `MsgID`, `SubCmdID` and `CustomTagID` enumerations hold the protocol identifiers.
- `aprolink.automatic` holds the automation-side helpers.
  - `ReadyInfo` and `SiteReady` model the site-ready report. They go to and from JSON with `to_json` and `from_json`.
  - `MessageHub` is a process-wide message broadcaster.
  - `Automatic` is the base of handler drivers.
- `aprolink.external_server.ExternalServer` is a TCP listener.
  - Each client sends a `CommandHead` followed by a payload.
  - When the payload reads `GetReport`, the callback receives the client socket.
- `aprolink.views` holds the view settings.
  - `app_version()` returns the version string, `"v0.1.0"`.
  - `ViewLayout` stores which named views are visible in a JSON settings file.

## Installation

```
pip install .
```

## Framing a message

```python
from aprolink.framing import encode_frame, FrameDecoder

frame = encode_frame(b'{"jsonrpc":"2.0","method":"GetSKTInfo","id":1}')

decoder = FrameDecoder()
for payload in decoder.feed(frame):
    print(payload)
```

Partial frames stay buffered until the rest arrives. `decoder.clear()` drops
whatever is buffered.

## Sending a request

```python
from aprolink.client import JsonRpcClient

with JsonRpcClient() as client:
    client.connect("127.0.0.1", 12345)
    client.send_request(
        "GetSKTInfo",
        {},
        on_success=lambda result: print("result", result),
        on_error=lambda error: print("error", error.code, error.message),
        timeout=10.0,
    )
```

## Packing a device packet

```python
from aprolink.icd import LinkScanPacket

raw = LinkScanPacket(hop_num=0).pack()
assert len(raw) == 32
assert LinkScanPacket.unpack(raw).hop_num == 0
```

## What it does not do

This is a library only. It has no command-line program and no graphical
front-end. It also has no ready-made helpers for the station's individual
requests, such as loading a project or starting a job. Build those with
`JsonRpcClient.send_request` and the method names and parameters your
station expects.

## Development

```
pip install -e .[test]
pytest
```