"""Event actions, the connection interface and the event-handler callbacks."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Any


class Action(enum.IntEnum):
    """What should happen after an event has been handled."""

    NONE = 0
    CLOSE = 1
    SHUTDOWN = 2


class Conn(ABC):
    """A connection as seen by event callbacks.

    ``context`` holds a user-defined value; ``local_addr`` and ``remote_addr``
    are the socket addresses of the two ends.
    """

    context: Any
    local_addr: Any
    remote_addr: Any

    @abstractmethod
    def read(self) -> bytes:
        """Return all buffered inbound data without consuming it."""

    @abstractmethod
    def reset_buffer(self) -> None:
        """Discard all buffered inbound data."""

    @abstractmethod
    def read_n(self, n: int) -> tuple[int, bytes]:
        """Return up to ``n`` buffered bytes and their count, without consuming them."""

    @abstractmethod
    def shift_n(self, n: int) -> int:
        """Consume ``n`` buffered bytes and return how many were consumed."""

    @abstractmethod
    def buffer_length(self) -> int:
        """Return the number of buffered inbound bytes."""

    @abstractmethod
    def send_to(self, buf: bytes) -> None:
        """Send a datagram back to the peer."""

    @abstractmethod
    def async_write(self, buf: bytes) -> None:
        """Queue ``buf`` to be written from the event loop."""

    @abstractmethod
    def wake(self) -> None:
        """Trigger a react event for this connection."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection from the event loop."""


class EventHandler(ABC):
    """Callbacks fired by the server; each may steer it with an :class:`Action`."""

    @abstractmethod
    def on_init_complete(self, server: Any) -> Action:
        """The server is ready to accept connections."""

    @abstractmethod
    def on_shutdown(self, server: Any) -> None:
        """All event loops and connections have been closed."""

    @abstractmethod
    def on_opened(self, conn: Conn) -> tuple[bytes | None, Action]:
        """A connection was opened; returned bytes are sent without encoding."""

    @abstractmethod
    def on_closed(self, conn: Conn, err: BaseException | None) -> Action:
        """A connection was closed; ``err`` is the last known error."""

    @abstractmethod
    def pre_write(self, conn: Conn) -> None:
        """Data is about to be written to the peer."""

    @abstractmethod
    def after_write(self, conn: Conn, data: bytes | None) -> None:
        """Data has just been written to the peer."""

    @abstractmethod
    def react(self, packet: bytes | None, conn: Conn) -> tuple[bytes | None, Action]:
        """The peer sent a frame; returned bytes are encoded and sent back."""

    @abstractmethod
    def tick(self) -> tuple[float, Action]:
        """Periodic callback; returns the delay in seconds until the next tick."""


class EventServer(EventHandler):
    """An event handler with default callbacks; subclass and override.

    The defaults take no action on connections. They keep ``writes_in_flight``,
    the number of writes begun by ``pre_write`` and not yet finished by
    ``after_write``, which ``on_shutdown`` resets.
    """

    writes_in_flight: int = 0

    def on_init_complete(self, server: Any) -> Action:
        return Action.NONE

    def on_shutdown(self, server: Any) -> None:
        self.writes_in_flight = 0

    def on_opened(self, conn: Conn) -> tuple[bytes | None, Action]:
        return None, Action.NONE

    def on_closed(self, conn: Conn, err: BaseException | None) -> Action:
        return Action.NONE

    def pre_write(self, conn: Conn) -> None:
        self.writes_in_flight += 1

    def after_write(self, conn: Conn, data: bytes | None) -> None:
        if self.writes_in_flight > 0:
            self.writes_in_flight -= 1

    def react(self, packet: bytes | None, conn: Conn) -> tuple[bytes | None, Action]:
        return None, Action.NONE

    def tick(self) -> tuple[float, Action]:
        return 0.0, Action.NONE


def parse_proto_addr(addr: str) -> tuple[str, str]:
    """Split ``scheme://address`` into network and address; ``tcp`` is the default."""
    network = "tcp"
    address = addr.lower()
    if "://" in address:
        network, address = address.split("://")[:2]
    return network, address