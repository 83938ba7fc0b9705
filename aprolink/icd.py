"""Binary packet layouts exchanged with the programmer hardware over the network link.

All structures are byte-packed and little-endian. Bit fields are allocated
from the least significant bit upwards.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

MAX_NET_DATA_SIZE = 4112
"""Largest number of bytes a single network packet may carry."""

CMDID_PTPACK_SRC = 0x00
CMDID_PTPACK_ACK = 0x01
CMDID_PTPACK_COMPLETE = 0x02
CMDID_PTPACK_QUERYDOCMD = 0x10
CMDID_PTPACK_CUSTOM = 0x20

PTPACKET_PAYLOAD_LEN = 1016
DATA_PAYLOAD_MAX = 4096
FIRST_PACKET_FLAG = 1 << 5
MNG_PACKET_SIZE = 32


class MsgID(IntEnum):
    LINK_SCAN = 0x01
    HEARTBEAT = 0x02
    DEV_INFO_GET = 0x03
    DEV_INFO_RESP = 0x04
    CMD = 0x10
    CMD_RECV_RESP = 0x11
    CMD_COMPLETE_RESP = 0x12
    INTERRUPT = 0x14
    DATA_DOWNLINK = 0x18
    DATA_UPLINK = 0x19
    PT = 0x20


class SubCmdID(IntEnum):
    DATA_TRANS_FIBER2SSD = 0x01
    DATA_TRANS_FIBER2SKT = 0x02
    DATA_TRANS_FIBER2DDR = 0x06
    DATA_TRANS_SSD2FIBER = 0x04
    DATA_TRANS_SSD2SKT = 0x03
    DATA_TRANS_SKT2FIBER = 0x05
    DATA_TRANS_DDR2FIBER = 0x07
    DATA_TRANS_SSD2DDR = 0x08
    DATA_TRANS_DDR2SSD = 0x09
    READ_CAPACITY_SSD = 0x0A
    READ_CAPACITY_DDR = 0x0B
    READ_CAPACITY_SKT = 0x0C
    REGIST_READ = 0x10
    REGIST_WRITE = 0x11
    READ_CRC32 = 0x18
    MU_START = 0x400
    MU_INSTALL_FPGA = 0x410
    MU_INSTALL_DRIVER = 0x411
    MU_SET_CHIP_INFO = 0x412
    MU_SET_DRIVER_SELF_PARA = 0x413
    MU_SET_DRIVER_COMMON = 0x414
    MU_SET_DRIVER_PIN_MAP = 0x415
    MU_SET_DRIVER_PARTITION_TABLE = 0x416
    MU_DO_CMD_SEQUENCE = 0x417
    MU_SET_DATA_BUFFER_INFO = 0x418
    MU_DOWNLOAD_SSD_COMPLETE = 0x419
    MU_SET_BPU_ATTRIBUTE = 0x420
    MU_SET_SN_WITH_JSON = 0x421
    MU_SET_PARTITION_TABLE_HEAD_ADDR = 0x422
    MU_ADAPTER_READ = 0x430
    MU_ADAPTER_WRITE = 0x431
    MU_ADAPTER_INCREASE_COUNT = 0x432
    MU_GET_BPU_INFO = 0x433
    MU_GET_DEVICE_INFO = 0x434
    MU_SET_DEVICE_ALIAS = 0x435
    MU_GET_SKT_INFO = 0x436
    MU_GET_SKT_INFO_SIMPLE = 0x437
    MU_GET_MAIN_BOARD_INFO = 0x438
    MU_REBOOT_BPU = 0x440
    MU_SET_BUFFER_MAP_INFO = 0x450
    MU_UPDATE_FW = 0x458
    MU_REBOOT_MU = 0x459
    MU_UPDATE_DEVICE_TIME = 0x461
    MU_DEBUG_SETTING = 0x462
    MU_GET_REBOOT_CAUSE = 0x463
    MU_PROGRAM_SETTING = 0x464
    MU_GET_PROGRAM_SETTING = 0x465
    MU_PROGRAMMER_SELF_TEST = 0x466
    MU_MASTER_CHIP_ANALYZE = 0x467
    MU_READ_CHIP_EXTCSD = 0x468
    MU_GET_SKT_ENABLE = 0x469
    MU_DO_SEND_CUSTOM = 0x490
    MU_SET_PROGRESS = 0x510
    MU_SET_LOG = 0x511
    MU_SET_EVENT = 0x514
    READ_BUFF_DATA = 0x520
    MU_DO_CUSTOM = 0x590
    MU_END = 0x9FF


class CustomTagID(IntEnum):
    CUSTOM_TAG_MT422 = 0x20000014


_MNG = struct.Struct("<BB30x")
_FLAGGED_MNG = struct.Struct("<BBHH26x")
_DEV_INFO_RESP = struct.Struct("<BBH12x8I")
_DATA_TRANS = struct.Struct("<BBBBIIH2xIH2xIH2x")
_HEAD_ONLY = struct.Struct("<BBBBI24x")
_REGISTER = struct.Struct("<BBBBI8xI4xI4x")
_COMMON = struct.Struct("<BBBBI24s")
_CPL_CAPACITY = struct.Struct("<BBBBI16xIH2x")
_CPL_READ_REG = struct.Struct("<BBBBI8xI4xH4x")
_CPL_CRC32 = struct.Struct("<BBBBI16xII")
_INTERRUPT = struct.Struct("<BBBBI6I")
_DATA_HEAD = struct.Struct("<BBHIHH4x")
_PT = struct.Struct(f"<BBBBI{PTPACKET_PAYLOAD_LEN}s")

_SEQ_MASK = 0x1F
_DATA_LENGTH_MASK = 0x7FF


def _pack(layout: struct.Struct, *values) -> bytes:
    try:
        return layout.pack(*values)
    except struct.error as exc:
        raise ValueError(f"field out of range: {exc}") from exc


def _unpack(layout: struct.Struct, data: bytes, name: str) -> tuple:
    if len(data) < layout.size:
        raise ValueError(f"{name} needs {layout.size} bytes, got {len(data)}")
    return layout.unpack_from(bytes(data))


def _seq_byte(seq_num: int, flag: bool = False) -> int:
    if not 0 <= seq_num <= _SEQ_MASK:
        raise ValueError(f"seq_num {seq_num} does not fit in 5 bits")
    return seq_num | (FIRST_PACKET_FLAG if flag else 0)


def _split48(value: int, name: str) -> tuple[int, int]:
    if not 0 <= value < 1 << 48:
        raise ValueError(f"{name} {value} does not fit in 48 bits")
    return value & 0xFFFFFFFF, value >> 32


def _fixed_bytes(value: bytes, size: int, name: str) -> bytes:
    if len(value) > size:
        raise ValueError(f"{name} holds at most {size} bytes, got {len(value)}")
    return bytes(value).ljust(size, b"\0")


@dataclass
class LinkScanPacket:
    """Link scan packet sent from the PC to number the chained devices."""

    hop_num: int = 0
    msg_id: int = MsgID.LINK_SCAN

    def pack(self) -> bytes:
        return _pack(_MNG, self.msg_id, self.hop_num)

    @classmethod
    def unpack(cls, data: bytes) -> LinkScanPacket:
        msg_id, hop_num = _unpack(_MNG, data, cls.__name__)
        return cls(hop_num=hop_num, msg_id=msg_id)


@dataclass
class HeartbeatPacket:
    """Heartbeat a device sends every second; marks the last node of the chain."""

    hop_num: int = 0
    last_hop: bool = False
    link_status: int = 0
    msg_id: int = MsgID.HEARTBEAT

    def pack(self) -> bytes:
        flags = FIRST_PACKET_FLAG if self.last_hop else 0
        return _pack(_FLAGGED_MNG, self.msg_id, self.hop_num, flags, self.link_status)

    @classmethod
    def unpack(cls, data: bytes) -> HeartbeatPacket:
        msg_id, hop_num, flags, link_status = _unpack(_FLAGGED_MNG, data, cls.__name__)
        return cls(
            hop_num=hop_num,
            last_hop=bool(flags & FIRST_PACKET_FLAG),
            link_status=link_status,
            msg_id=msg_id,
        )


@dataclass
class DevInfoGetPacket:
    """Request for a device's information block."""

    hop_num: int = 0
    msg_id: int = MsgID.DEV_INFO_GET

    def pack(self) -> bytes:
        return _pack(_MNG, self.msg_id, self.hop_num)

    @classmethod
    def unpack(cls, data: bytes) -> DevInfoGetPacket:
        msg_id, hop_num = _unpack(_MNG, data, cls.__name__)
        return cls(hop_num=hop_num, msg_id=msg_id)


@dataclass
class DevInfoRespPacket:
    """Device information response: eight words of hardware details."""

    hop_num: int = 0
    valid: bool = False
    dev_info: tuple[int, ...] = (0,) * 8
    msg_id: int = MsgID.DEV_INFO_RESP

    def pack(self) -> bytes:
        if len(self.dev_info) != 8:
            raise ValueError(f"dev_info needs 8 words, got {len(self.dev_info)}")
        flags = FIRST_PACKET_FLAG if self.valid else 0
        return _pack(_DEV_INFO_RESP, self.msg_id, self.hop_num, flags, *self.dev_info)

    @classmethod
    def unpack(cls, data: bytes) -> DevInfoRespPacket:
        msg_id, hop_num, flags, *words = _unpack(_DEV_INFO_RESP, data, cls.__name__)
        return cls(
            hop_num=hop_num,
            valid=bool(flags & FIRST_PACKET_FLAG),
            dev_info=tuple(words),
            msg_id=msg_id,
        )


@dataclass
class CmdPacketDataTrans:
    """Data transfer sub-command; addresses and length are 48-bit byte values."""

    hop_num: int = 0
    seq_num: int = 0
    first_packet: bool = False
    cmd_id: int = SubCmdID.DATA_TRANS_FIBER2SSD
    port_id: int = 0
    src_addr: int = 0
    dest_addr: int = 0
    length: int = 0
    msg_id: int = MsgID.CMD

    def pack(self) -> bytes:
        src_l, src_h = _split48(self.src_addr, "src_addr")
        dst_l, dst_h = _split48(self.dest_addr, "dest_addr")
        len_l, len_h = _split48(self.length, "length")
        return _pack(
            _DATA_TRANS,
            self.msg_id,
            self.hop_num,
            _seq_byte(self.seq_num, self.first_packet),
            self.cmd_id,
            self.port_id,
            src_l,
            src_h,
            dst_l,
            dst_h,
            len_l,
            len_h,
        )

    @classmethod
    def unpack(cls, data: bytes) -> CmdPacketDataTrans:
        (msg_id, hop_num, seq, cmd_id, port_id,
         src_l, src_h, dst_l, dst_h, len_l, len_h) = _unpack(_DATA_TRANS, data, cls.__name__)
        return cls(
            hop_num=hop_num,
            seq_num=seq & _SEQ_MASK,
            first_packet=bool(seq & FIRST_PACKET_FLAG),
            cmd_id=cmd_id,
            port_id=port_id,
            src_addr=src_l | src_h << 32,
            dest_addr=dst_l | dst_h << 32,
            length=len_l | len_h << 32,
            msg_id=msg_id,
        )


@dataclass
class CmdPacketGetCapacity:
    """Capacity query for SSD, DDR or socket."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = SubCmdID.READ_CAPACITY_SSD
    port_id: int = 0
    msg_id: int = MsgID.CMD

    def pack(self) -> bytes:
        return _pack(_HEAD_ONLY, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.port_id)

    @classmethod
    def unpack(cls, data: bytes) -> CmdPacketGetCapacity:
        msg_id, hop_num, seq, cmd_id, port_id = _unpack(_HEAD_ONLY, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, port_id, msg_id)


@dataclass
class CmdPacketRegister:
    """Register read or write sub-command."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = SubCmdID.REGIST_READ
    port_id: int = 0
    reg_addr: int = 0
    reg_value: int = 0
    msg_id: int = MsgID.CMD

    def pack(self) -> bytes:
        return _pack(_REGISTER, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.port_id, self.reg_addr, self.reg_value)

    @classmethod
    def unpack(cls, data: bytes) -> CmdPacketRegister:
        msg_id, hop_num, seq, cmd_id, port_id, reg_addr, reg_value = _unpack(
            _REGISTER, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, port_id, reg_addr, reg_value, msg_id)


@dataclass
class CmdPacketGetCRC32:
    """Request for the CRC32 of the last transferred data block."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = SubCmdID.READ_CRC32
    port_id: int = 0
    msg_id: int = MsgID.CMD

    def pack(self) -> bytes:
        return _pack(_HEAD_ONLY, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.port_id)

    @classmethod
    def unpack(cls, data: bytes) -> CmdPacketGetCRC32:
        msg_id, hop_num, seq, cmd_id, port_id = _unpack(_HEAD_ONLY, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, port_id, msg_id)


@dataclass
class CmdPacketCommon:
    """Generic command packet with 24 bytes of command-specific data."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = 0
    port_id: int = 0
    cmd_spec: bytes = bytes(24)
    msg_id: int = MsgID.CMD

    def pack(self) -> bytes:
        spec = _fixed_bytes(self.cmd_spec, 24, "cmd_spec")
        return _pack(_COMMON, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.port_id, spec)

    @classmethod
    def unpack(cls, data: bytes) -> CmdPacketCommon:
        msg_id, hop_num, seq, cmd_id, port_id, spec = _unpack(_COMMON, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, port_id, spec, msg_id)


@dataclass
class CmdRespPacket:
    """Acknowledgement that a command packet was received."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = 0
    port_id: int = 0
    msg_id: int = MsgID.CMD_RECV_RESP

    def pack(self) -> bytes:
        return _pack(_HEAD_ONLY, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.port_id)

    @classmethod
    def unpack(cls, data: bytes) -> CmdRespPacket:
        msg_id, hop_num, seq, cmd_id, port_id = _unpack(_HEAD_ONLY, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, port_id, msg_id)


@dataclass
class CmdCplPacketTrans:
    """Completion of a data transfer; each status bit is one socket's result."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = 0
    status: int = 0
    msg_id: int = MsgID.CMD_COMPLETE_RESP

    def pack(self) -> bytes:
        return _pack(_HEAD_ONLY, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.status)

    @classmethod
    def unpack(cls, data: bytes) -> CmdCplPacketTrans:
        msg_id, hop_num, seq, cmd_id, status = _unpack(_HEAD_ONLY, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, status, msg_id)


@dataclass
class CmdCplPacketGetCapacity:
    """Completion of a capacity query; capacity is a 48-bit value."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = 0
    status: int = 0
    capacity: int = 0
    msg_id: int = MsgID.CMD_COMPLETE_RESP

    def pack(self) -> bytes:
        cap_l, cap_h = _split48(self.capacity, "capacity")
        return _pack(_CPL_CAPACITY, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.status, cap_l, cap_h)

    @classmethod
    def unpack(cls, data: bytes) -> CmdCplPacketGetCapacity:
        msg_id, hop_num, seq, cmd_id, status, cap_l, cap_h = _unpack(
            _CPL_CAPACITY, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, status, cap_l | cap_h << 32, msg_id)


@dataclass
class CmdCplPacketReadReg:
    """Completion of a register access, carrying a 16-bit register value."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = 0
    status: int = 0
    reg_addr: int = 0
    reg_value: int = 0
    msg_id: int = MsgID.CMD_COMPLETE_RESP

    def pack(self) -> bytes:
        return _pack(_CPL_READ_REG, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.status, self.reg_addr, self.reg_value)

    @classmethod
    def unpack(cls, data: bytes) -> CmdCplPacketReadReg:
        msg_id, hop_num, seq, cmd_id, status, reg_addr, reg_value = _unpack(
            _CPL_READ_REG, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, status, reg_addr, reg_value, msg_id)


@dataclass
class CmdCplPacketGetCRC32:
    """Completion of a CRC32 query with the downlink and uplink checksums."""

    hop_num: int = 0
    seq_num: int = 0
    cmd_id: int = 0
    status: int = 0
    crc32_downlink: int = 0
    crc32_uplink: int = 0
    msg_id: int = MsgID.CMD_COMPLETE_RESP

    def pack(self) -> bytes:
        return _pack(_CPL_CRC32, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.cmd_id, self.status, self.crc32_downlink, self.crc32_uplink)

    @classmethod
    def unpack(cls, data: bytes) -> CmdCplPacketGetCRC32:
        msg_id, hop_num, seq, cmd_id, status, down, up = _unpack(
            _CPL_CRC32, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, cmd_id, status, down, up, msg_id)


@dataclass
class InterruptPacket:
    """Interrupt raised by a device, with six words of interrupt details."""

    hop_num: int = 0
    seq_num: int = 0
    int_id: int = 0
    port_id: int = 0
    spec: tuple[int, ...] = (0,) * 6
    msg_id: int = MsgID.INTERRUPT

    def pack(self) -> bytes:
        if len(self.spec) != 6:
            raise ValueError(f"spec needs 6 words, got {len(self.spec)}")
        return _pack(_INTERRUPT, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.int_id, self.port_id, *self.spec)

    @classmethod
    def unpack(cls, data: bytes) -> InterruptPacket:
        msg_id, hop_num, seq, int_id, port_id, *spec = _unpack(_INTERRUPT, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, int_id, port_id, tuple(spec), msg_id)


@dataclass
class DataPacket:
    """Bulk data packet; the payload is counted in 32-bit words, at most 1024."""

    hop_num: int = 0
    first: bool = False
    port_id: int = 0
    pnum: int = 0
    data: bytes = b""
    msg_id: int = MsgID.DATA_DOWNLINK

    @property
    def length(self) -> int:
        """Payload length in 32-bit words."""
        return (len(self.data) + 3) // 4

    def pack(self) -> bytes:
        if len(self.data) > DATA_PAYLOAD_MAX:
            raise ValueError(f"data holds at most {DATA_PAYLOAD_MAX} bytes, got {len(self.data)}")
        flags = FIRST_PACKET_FLAG if self.first else 0
        head = _pack(_DATA_HEAD, self.msg_id, self.hop_num, flags, self.port_id,
                     self.pnum, self.length)
        return head + bytes(self.data).ljust(DATA_PAYLOAD_MAX, b"\0")

    @classmethod
    def unpack(cls, data: bytes) -> DataPacket:
        msg_id, hop_num, flags, port_id, pnum, length = _unpack(_DATA_HEAD, data, cls.__name__)
        size = (length & _DATA_LENGTH_MASK) * 4
        if size > DATA_PAYLOAD_MAX:
            raise ValueError(f"payload length {size} exceeds {DATA_PAYLOAD_MAX} bytes")
        end = _DATA_HEAD.size + size
        if len(data) < end:
            raise ValueError(f"{cls.__name__} needs {end} bytes, got {len(data)}")
        return cls(
            hop_num=hop_num,
            first=bool(flags & FIRST_PACKET_FLAG),
            port_id=port_id,
            pnum=pnum,
            data=bytes(data[_DATA_HEAD.size:end]),
            msg_id=msg_id,
        )


@dataclass
class CmdPacketPT:
    """Pass-through packet with a fixed-size payload."""

    hop_num: int = 0
    seq_num: int = 0
    sub_id: int = CMDID_PTPACK_SRC
    port_id: int = 0
    data: bytes = b""
    msg_id: int = MsgID.PT

    def pack(self) -> bytes:
        payload = _fixed_bytes(self.data, PTPACKET_PAYLOAD_LEN, "data")
        return _pack(_PT, self.msg_id, self.hop_num, _seq_byte(self.seq_num),
                     self.sub_id, self.port_id, payload)

    @classmethod
    def unpack(cls, data: bytes) -> CmdPacketPT:
        msg_id, hop_num, seq, sub_id, port_id, payload = _unpack(_PT, data, cls.__name__)
        return cls(hop_num, seq & _SEQ_MASK, sub_id, port_id, payload, msg_id)


@dataclass
class SocketOptions:
    """Socket tuning options; timeouts are in milliseconds."""

    recv_buf_size: int = 0
    send_buf_size: int = 0
    recv_timeout_ms: int = 0
    send_timeout_ms: int = 0
    reuse_addr: bool = False
    zero_copy: int = 0