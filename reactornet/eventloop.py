"""The event loop: it accepts connections, reads, writes and closes them, and runs queued tasks."""

from __future__ import annotations

import collections
import logging
import selectors
import socket
import threading
from collections.abc import Callable
from typing import Any

from reactornet.codec import Codec
from reactornet.connection import Connection
from reactornet.errors import GnetError, ServerShutdown
from reactornet.events import Action, EventHandler

logger = logging.getLogger(__name__)

_ACCEPT = "accept"
_WAKE = "wake"

Task = Callable[[Any], Any]


def _network_of(sock: socket.socket | None) -> str:
    if sock is None:
        return "tcp"
    if sock.type == socket.SOCK_DGRAM:
        return "udp"
    if getattr(socket, "AF_UNIX", None) is not None and sock.family == socket.AF_UNIX:
        return "unix"
    return "tcp"


def _set_keepalive(sock: socket.socket, seconds: float) -> None:
    secs = max(1, int(seconds))
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        idle = getattr(socket, "TCP_KEEPIDLE", None) or getattr(socket, "TCP_KEEPALIVE", None)
        if idle is not None:
            sock.setsockopt(socket.IPPROTO_TCP, idle, secs)
        interval = getattr(socket, "TCP_KEEPINTVL", None)
        if interval is not None:
            sock.setsockopt(socket.IPPROTO_TCP, interval, secs)
    except OSError as exc:
        logger.error("failed to set keep-alive: %s", exc)


class EventLoop:
    """One I/O event loop serving a listener and the connections it owns.

    ``listener`` is a bound, non-blocking socket (or None for a loop that only
    serves registered connections). Callbacks queued with :meth:`trigger` and
    :meth:`urgent_trigger` run on the loop's thread.
    """

    def __init__(
        self,
        listener: socket.socket | None,
        index: int,
        handler: EventHandler,
        codec: Codec | None = None,
        read_buffer_cap: int = 0x10000,
        tcp_keepalive: float = 0,
    ) -> None:
        self.listener = listener
        self.index = index
        self.handler = handler
        self.codec = codec
        self.read_buffer_cap = read_buffer_cap if read_buffer_cap > 0 else 0x10000
        self.tcp_keepalive = tcp_keepalive
        self.network = _network_of(listener)
        self.local_addr = listener.getsockname() if listener is not None else None
        self.connections: dict[int, Connection] = {}

        self._count = 0
        self._count_lock = threading.Lock()
        self._tasks: collections.deque[tuple[Task, Any]] = collections.deque()
        self._tasks_lock = threading.Lock()
        self._stopping = False
        self._closed = False

        self._selector = selectors.DefaultSelector()
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)
        self._selector.register(self._wake_r, selectors.EVENT_READ, _WAKE)
        if listener is not None:
            self._selector.register(listener, selectors.EVENT_READ, _ACCEPT)

    # ----------------------------------------------------------------- counters

    def _add_conn(self, delta: int) -> None:
        with self._count_lock:
            self._count += delta

    def count_connections(self) -> int:
        """Number of open connections owned by this loop."""
        with self._count_lock:
            return self._count

    # -------------------------------------------------------------------- tasks

    def _wake(self) -> None:
        try:
            self._wake_w.send(b"\0")
        except OSError:
            pass

    def trigger(self, callback: Task, arg: Any) -> None:
        """Queue ``callback(arg)`` to run on the loop."""
        with self._tasks_lock:
            self._tasks.append((callback, arg))
        self._wake()

    def urgent_trigger(self, callback: Task, arg: Any) -> None:
        """Queue ``callback(arg)`` ahead of all other pending tasks."""
        with self._tasks_lock:
            self._tasks.appendleft((callback, arg))
        self._wake()

    def _run_tasks(self) -> None:
        while True:
            with self._tasks_lock:
                if not self._tasks:
                    return
                callback, arg = self._tasks.popleft()
            try:
                callback(arg)
            except ServerShutdown:
                raise
            except (GnetError, OSError) as exc:
                logger.debug("event-loop(%d) task failed: %s", self.index, exc)
            for conn in list(self.connections.values()):
                self._watch(conn)

    # ------------------------------------------------------------ poller helpers

    def _watch(self, conn: Connection) -> None:
        """Watch ``conn`` for writability exactly while it has pending output."""
        if self.connections.get(conn.fd) is not conn:
            return
        wanted = selectors.EVENT_READ | (selectors.EVENT_WRITE if conn.outbound else 0)
        try:
            key = self._selector.get_key(conn.sock)
        except (KeyError, ValueError):
            return
        if key.events != wanted:
            self._selector.modify(conn.sock, wanted, conn)

    # ----------------------------------------------------------- loop handlers

    def register(self, conn: Connection) -> Any:
        """Start serving a connection accepted elsewhere."""
        try:
            self._selector.register(conn.sock, selectors.EVENT_READ, conn)
        except (KeyError, ValueError, OSError):
            conn.sock.close()
            conn.release()
            return None
        self.connections[conn.fd] = conn
        return self.loop_open(conn)

    def loop_accept(self) -> Any:
        """Accept a pending connection, or read a datagram on a UDP listener."""
        if self.network == "udp":
            return self.loop_read_udp()
        try:
            sock, addr = self.listener.accept()
        except BlockingIOError:
            return None
        except OSError as exc:
            logger.error("Accept() fails due to error: %s", exc)
            raise
        sock.setblocking(False)
        if self.tcp_keepalive > 0 and self.network == "tcp":
            _set_keepalive(sock, self.tcp_keepalive)
        conn = Connection(sock, self, addr, self.codec)
        self._selector.register(sock, selectors.EVENT_READ, conn)
        self.connections[conn.fd] = conn
        return self.loop_open(conn)

    def loop_open(self, conn: Connection) -> Any:
        """Mark ``conn`` open, fire ``on_opened`` and send its greeting."""
        conn.opened = True
        self._add_conn(1)
        out, action = self.handler.on_opened(conn)
        if out is not None:
            conn.open(out)
        self._watch(conn)
        return self.handle_action(conn, action)

    def loop_read(self, conn: Connection) -> Any:
        """Read from ``conn`` and react to every complete frame."""
        try:
            data = conn.sock.recv(self.read_buffer_cap)
        except BlockingIOError:
            return None
        except OSError as exc:
            return self.loop_close_conn(conn, exc)
        if not data:
            return self.loop_close_conn(conn, None)

        for frame in conn.feed(data):
            out, action = self.handler.react(frame, conn)
            if out is not None:
                conn.write(out)
            if action == Action.CLOSE:
                return self.loop_close_conn(conn, None)
            if action == Action.SHUTDOWN:
                raise ServerShutdown()
        self._watch(conn)
        return None

    def loop_write(self, conn: Connection) -> Any:
        """Flush as much pending output of ``conn`` as the socket takes."""
        self.handler.pre_write(conn)
        try:
            sent = conn.sock.send(conn.outbound)
        except BlockingIOError:
            return None
        except OSError as exc:
            return self.loop_close_conn(conn, exc)
        del conn.outbound[:sent]
        self._watch(conn)
        self.handler.after_write(conn, None)
        return None

    def loop_close_conn(self, conn: Connection, err: BaseException | None) -> Any:
        """Flush what is pending, close ``conn`` and fire ``on_closed``."""
        if not conn.opened:
            return None

        if conn.outbound:
            self.handler.pre_write(conn)
            try:
                conn.sock.send(conn.outbound)
            except OSError:
                pass
            self.handler.after_write(conn, None)

        problems: list[str] = []
        try:
            self._selector.unregister(conn.sock)
        except (KeyError, ValueError) as exc:
            problems.append(
                f"failed to delete fd={conn.fd} from poller in event-loop({self.index}): {exc}"
            )
        try:
            conn.sock.close()
        except OSError as exc:
            problems.append(f"failed to close fd={conn.fd} in event-loop({self.index}): {exc}")
        if problems:
            raise GnetError(" & ".join(problems))

        self.connections.pop(conn.fd, None)
        self._add_conn(-1)
        if self.handler.on_closed(conn, err) == Action.SHUTDOWN:
            raise ServerShutdown()
        conn.release()
        return None

    def loop_wake(self, conn: Connection) -> Any:
        """Fire a ``react`` with no packet for ``conn``; stale wakes are ignored."""
        if self.connections.get(conn.fd) is not conn:
            return None
        out, action = self.handler.react(None, conn)
        if out is not None:
            conn.write(out)
        self._watch(conn)
        return self.handle_action(conn, action)

    def loop_ticker(self, stop_event: threading.Event) -> None:
        """Call ``tick`` repeatedly until ``stop_event`` is set."""
        while True:
            delay, action = self.handler.tick()
            if action == Action.SHUTDOWN:
                self.urgent_trigger(_raise_shutdown, None)
                logger.debug("stopping ticker in event-loop(%d) from Tick()", self.index)
            if stop_event.wait(max(0.0, delay)):
                logger.debug("stopping ticker in event-loop(%d) from Server", self.index)
                return

    def handle_action(self, conn: Connection, action: Action) -> Any:
        """Apply the action returned by a callback to ``conn``."""
        if action == Action.CLOSE:
            return self.loop_close_conn(conn, None)
        if action == Action.SHUTDOWN:
            raise ServerShutdown()
        return None

    def loop_read_udp(self) -> None:
        """Read one datagram from the listener and react to it."""
        try:
            data, addr = self.listener.recvfrom(self.read_buffer_cap)
        except BlockingIOError:
            return None
        except OSError as exc:
            raise GnetError(
                f"failed to read UDP packet from fd={self.listener.fileno()} "
                f"in event-loop({self.index}), recvfrom: {exc}"
            ) from exc
        conn = Connection.udp(self.listener, self, addr)
        out, action = self.handler.react(data, conn)
        if out is not None:
            try:
                conn.send_to(out)
            except OSError:
                pass
        if action == Action.SHUTDOWN:
            raise ServerShutdown()
        conn.release()
        return None

    def close_all_conns(self) -> None:
        """Close every connection of the loop, ignoring what the callbacks ask for."""
        for conn in list(self.connections.values()):
            try:
                self.loop_close_conn(conn, None)
            except (GnetError, OSError) as exc:
                logger.debug("event-loop(%d) closing connection: %s", self.index, exc)

    # ----------------------------------------------------------------- running

    def _dispatch(self, key: selectors.SelectorKey, mask: int) -> None:
        if key.data == _WAKE:
            try:
                while self._wake_r.recv(4096):
                    pass
            except OSError:
                pass
        elif key.data == _ACCEPT:
            self.loop_accept()
        else:
            conn: Connection = key.data
            conn.handle_events(mask)
            self._watch(conn)

    def run(self) -> None:
        """Serve events until :meth:`stop` is called or a callback asks for shutdown."""
        if self._closed:
            raise GnetError("event loop is closed")
        try:
            while not self._stopping:
                try:
                    for key, mask in self._selector.select():
                        try:
                            self._dispatch(key, mask)
                        except (GnetError, OSError) as exc:
                            if isinstance(exc, ServerShutdown):
                                raise
                            logger.debug("event-loop(%d) got a nonlethal error: %s", self.index, exc)
                    self._run_tasks()
                except ServerShutdown as exc:
                    logger.debug("event-loop(%d) is exiting on demand from user: %s", self.index, exc)
                    return
        finally:
            self.close_all_conns()
            self._close()

    def stop(self) -> None:
        """Ask the running loop to exit."""
        self._stopping = True
        self._wake()

    def _close(self) -> None:
        self._closed = True
        self._selector.close()
        self._wake_r.close()
        self._wake_w.close()


def _raise_shutdown(_: Any) -> None:
    raise ServerShutdown()