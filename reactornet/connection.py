"""A non-blocking socket connection owned by an event loop."""

from __future__ import annotations

import selectors
import socket
from collections.abc import Iterator
from typing import Any

from reactornet.codec import BuiltInFrameCodec, Codec
from reactornet.errors import CodecError
from reactornet.events import Conn


class Connection(Conn):
    """A connection bound to one event loop.

    The loop is expected to provide ``handler``, ``local_addr``, ``trigger``,
    ``urgent_trigger``, ``loop_read``, ``loop_write``, ``loop_close_conn`` and
    ``loop_wake``. Data that could not be sent at once waits in ``outbound``;
    the loop watches the socket for writability while it is not empty.
    """

    def __init__(self, sock: socket.socket, loop: Any, remote_addr: Any, codec: Codec | None = None) -> None:
        self.sock = sock
        self.fd = sock.fileno()
        self.loop = loop
        self.codec = codec if codec is not None else BuiltInFrameCodec()
        self.context: Any = None
        self.opened = False
        self.local_addr = loop.local_addr
        self.remote_addr = remote_addr
        self.inbound = bytearray()
        self.outbound = bytearray()
        self._buffer: bytes = b""

    @classmethod
    def udp(cls, sock: socket.socket, loop: Any, remote_addr: Any) -> Connection:
        """A short-lived connection representing one datagram's sender."""
        return cls(sock, loop, remote_addr, None)

    def release(self) -> None:
        """Drop all state held by the connection."""
        self.opened = False
        self.context = None
        self.local_addr = None
        self.remote_addr = None
        self._buffer = b""
        self.inbound.clear()
        self.outbound.clear()

    def open(self, buf: bytes) -> None:
        """Send the greeting returned by ``on_opened`` without encoding it."""
        handler = self.loop.handler
        try:
            handler.pre_write(self)
            try:
                sent = self.sock.send(buf)
            except BlockingIOError:
                self.outbound.extend(buf)
                return
            if sent < len(buf):
                self.outbound.extend(buf[sent:])
        finally:
            handler.after_write(self, buf)

    def decode_frame(self) -> bytes | None:
        """Decode the next inbound frame, or return None if there is none."""
        try:
            return self.codec.decode(self)
        except CodecError:
            return None

    def write(self, buf: bytes) -> Any:
        """Encode ``buf`` and send it, buffering whatever cannot be sent now."""
        handler = self.loop.handler
        try:
            out = self.codec.encode(self, buf)
            handler.pre_write(self)
            # Keep packet order: once data is pending, everything queues behind it.
            if self.outbound:
                self.outbound.extend(out)
                return None
            try:
                sent = self.sock.send(out)
            except BlockingIOError:
                self.outbound.extend(out)
                return None
            except OSError as exc:
                return self.loop.loop_close_conn(self, exc)
            if sent < len(out):
                self.outbound.extend(out[sent:])
            return None
        finally:
            handler.after_write(self, buf)

    def feed(self, data: bytes) -> Iterator[bytes]:
        """Yield the frames decodable from buffered data plus ``data``.

        Stops early once the connection is no longer open. When every frame
        has been taken, the undecoded rest is kept for the next read.
        """
        self._buffer = bytes(data)
        while (frame := self.decode_frame()) is not None:
            yield frame
            if not self.opened:
                return
        self.inbound.extend(self._buffer)
        self._buffer = b""

    def handle_events(self, events: int) -> Any:
        """Dispatch a selector event mask to the loop, writes first."""
        writable = bool(events & selectors.EVENT_WRITE)
        if writable and self.outbound:
            self.loop.loop_write(self)
        if events & selectors.EVENT_READ and (not writable or not self.outbound):
            return self.loop.loop_read(self)
        return None

    def read(self) -> bytes:
        if not self.inbound:
            return self._buffer
        return bytes(self.inbound) + self._buffer

    def reset_buffer(self) -> None:
        self._buffer = b""
        self.inbound.clear()

    def read_n(self, n: int) -> tuple[int, bytes]:
        total = len(self.inbound) + len(self._buffer)
        if total < n or n <= 0:
            n = total
        if not self.inbound:
            return n, self._buffer[:n]
        return n, (bytes(self.inbound) + self._buffer)[:n]

    def shift_n(self, n: int) -> int:
        in_len = len(self.inbound)
        total = in_len + len(self._buffer)
        if total < n or n <= 0:
            self.reset_buffer()
            return total
        if not self.inbound:
            self._buffer = self._buffer[n:]
        elif in_len >= n:
            del self.inbound[:n]
        else:
            self.inbound.clear()
            self._buffer = self._buffer[n - in_len:]
        return n

    def buffer_length(self) -> int:
        return len(self.inbound) + len(self._buffer)

    def _async_write(self, buf: bytes) -> Any:
        if not self.opened:
            return None
        return self.write(buf)

    def async_write(self, buf: bytes) -> Any:
        return self.loop.trigger(self._async_write, buf)

    def send_to(self, buf: bytes) -> None:
        handler = self.loop.handler
        handler.pre_write(self)
        try:
            self.sock.sendto(buf, self.remote_addr)
        finally:
            handler.after_write(self, buf)

    def wake(self) -> Any:
        return self.loop.urgent_trigger(lambda _: self.loop.loop_wake(self), None)

    def close(self) -> Any:
        return self.loop.trigger(lambda _: self.loop.loop_close_conn(self, None), None)