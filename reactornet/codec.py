"""Frame codecs that split an inbound byte stream into messages and frame outbound data."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

from reactornet.errors import (
    CodecError,
    CRLFNotFound,
    DelimiterNotFound,
    InvalidFixedLength,
    TooLessLength,
    UnexpectedEOF,
    UnsupportedLength,
)

CRLF_BYTE = b"\n"


class _Inbound(Protocol):
    def read(self) -> bytes: ...

    def read_n(self, n: int) -> tuple[int, bytes]: ...

    def shift_n(self, n: int) -> int: ...

    def reset_buffer(self) -> None: ...


class Codec(ABC):
    """Encodes outbound frames and decodes inbound frames of a connection."""

    @abstractmethod
    def encode(self, conn: Any, buf: bytes) -> bytes:
        """Frame ``buf`` for sending on ``conn``."""

    @abstractmethod
    def decode(self, conn: _Inbound) -> bytes | None:
        """Take the next frame out of the inbound data of ``conn``."""


class BuiltInFrameCodec(Codec):
    """Passes data through untouched; a decode takes everything buffered."""

    def encode(self, conn: Any, buf: bytes) -> bytes:
        return bytes(buf)

    def decode(self, conn: _Inbound) -> bytes | None:
        buf = bytes(conn.read())
        if not buf:
            return None
        conn.reset_buffer()
        return buf


class LineBasedFrameCodec(Codec):
    """Frames separated by a newline byte."""

    def encode(self, conn: Any, buf: bytes) -> bytes:
        return bytes(buf) + CRLF_BYTE

    def decode(self, conn: _Inbound) -> bytes:
        buf = bytes(conn.read())
        idx = buf.find(CRLF_BYTE)
        if idx == -1:
            raise CRLFNotFound()
        conn.shift_n(idx + 1)
        return buf[:idx]


class DelimiterBasedFrameCodec(Codec):
    """Frames separated by a single chosen delimiter byte."""

    def __init__(self, delimiter: int | bytes) -> None:
        if isinstance(delimiter, int):
            delimiter = bytes([delimiter])
        if len(delimiter) != 1:
            raise ValueError("delimiter must be a single byte")
        self.delimiter = bytes(delimiter)

    def encode(self, conn: Any, buf: bytes) -> bytes:
        return bytes(buf) + self.delimiter

    def decode(self, conn: _Inbound) -> bytes:
        buf = bytes(conn.read())
        idx = buf.find(self.delimiter)
        if idx == -1:
            raise DelimiterNotFound()
        conn.shift_n(idx + 1)
        return buf[:idx]


class FixedLengthFrameCodec(Codec):
    """Frames of a fixed number of bytes."""

    def __init__(self, frame_length: int) -> None:
        self.frame_length = frame_length

    def encode(self, conn: Any, buf: bytes) -> bytes:
        if len(buf) % self.frame_length != 0:
            raise InvalidFixedLength()
        return bytes(buf)

    def decode(self, conn: _Inbound) -> bytes:
        size, buf = conn.read_n(self.frame_length)
        if size == 0:
            raise UnexpectedEOF()
        buf = bytes(buf)
        conn.shift_n(size)
        return buf


class ByteOrder(enum.Enum):
    """Byte order of a length field."""

    BIG = "big"
    LITTLE = "little"


@dataclass(frozen=True)
class EncoderConfig:
    """How the length field is prepended to outbound frames."""

    byte_order: ByteOrder = ByteOrder.BIG
    length_field_length: int = 4
    length_adjustment: int = 0
    length_includes_length_field_length: bool = False


@dataclass(frozen=True)
class DecoderConfig:
    """Where the length field sits in inbound frames and what to strip."""

    byte_order: ByteOrder = ByteOrder.BIG
    length_field_offset: int = 0
    length_field_length: int = 4
    length_adjustment: int = 0
    initial_bytes_to_strip: int = 0


class InnerBuffer:
    """A read cursor over a byte string."""

    def __init__(self, data: bytes) -> None:
        self._view = memoryview(bytes(data))

    def read_n(self, n: int) -> bytes:
        """Consume and return the next ``n`` bytes."""
        if n == 0:
            return b""
        if n < 0:
            raise ValueError("negative length is invalid")
        if n > len(self._view):
            raise ValueError("exceeding buffer length")
        chunk = bytes(self._view[:n])
        self._view = self._view[n:]
        return chunk

    def __len__(self) -> int:
        return len(self._view)


def read_uint24(byte_order: ByteOrder, b: bytes) -> int:
    """Read a 3-byte unsigned integer from the start of ``b``."""
    if len(b) < 3:
        raise ValueError("need at least 3 bytes")
    return int.from_bytes(bytes(b[:3]), byte_order.value)


def write_uint24(byte_order: ByteOrder, v: int) -> bytes:
    """Write the low 24 bits of ``v`` as 3 bytes."""
    return (v & 0xFFFFFF).to_bytes(3, byte_order.value)


_FIELD_LIMITS = {
    1: (1 << 8, "length does not fit into a byte: {}"),
    2: (1 << 16, "length does not fit into a short integer: {}"),
    3: (1 << 24, "length does not fit into a medium integer: {}"),
}


class LengthFieldBasedFrameCodec(Codec):
    """Frames carrying their own length in a length field."""

    def __init__(self, encoder_config: EncoderConfig, decoder_config: DecoderConfig) -> None:
        self.encoder_config = encoder_config
        self.decoder_config = decoder_config

    def encode(self, conn: Any, buf: bytes) -> bytes:
        cfg = self.encoder_config
        payload = bytes(buf) if buf is not None else b""
        length = len(payload) + cfg.length_adjustment
        if cfg.length_includes_length_field_length:
            length += cfg.length_field_length
        if length < 0:
            raise TooLessLength()

        size = cfg.length_field_length
        if size in _FIELD_LIMITS:
            limit, message = _FIELD_LIMITS[size]
            if length >= limit:
                raise CodecError(message.format(length))
        elif size not in (4, 8):
            raise UnsupportedLength()
        field = (length & ((1 << (8 * size)) - 1)).to_bytes(size, cfg.byte_order.value)
        return field + payload

    def decode(self, conn: _Inbound) -> bytes:
        cfg = self.decoder_config
        inbound = InnerBuffer(conn.read())
        header = b""
        if cfg.length_field_offset > 0:
            try:
                header = inbound.read_n(cfg.length_field_offset)
            except ValueError as exc:
                raise UnexpectedEOF() from exc

        len_buf, frame_length = self._unadjusted_frame_length(inbound)
        msg_length = frame_length + cfg.length_adjustment
        try:
            msg = inbound.read_n(msg_length)
        except ValueError as exc:
            raise UnexpectedEOF() from exc

        full = header + len_buf + msg
        conn.shift_n(len(full))
        return full[cfg.initial_bytes_to_strip:]

    def _unadjusted_frame_length(self, inbound: InnerBuffer) -> tuple[bytes, int]:
        size = self.decoder_config.length_field_length
        if size not in (1, 2, 3, 4, 8):
            raise UnsupportedLength()
        try:
            len_buf = inbound.read_n(size)
        except ValueError as exc:
            raise UnexpectedEOF() from exc
        return len_buf, int.from_bytes(len_buf, self.decoder_config.byte_order.value)