import select
import socket
import threading

import pytest

from reactornet.codec import LineBasedFrameCodec
from reactornet.connection import Connection
from reactornet.errors import ServerShutdown
from reactornet.eventloop import EventLoop
from reactornet.events import Action, EventServer


class Recorder(EventServer):
    def __init__(self, greeting=None, react_action=Action.NONE, echo=True):
        self.greeting = greeting
        self.react_action = react_action
        self.echo = echo
        self.packets = []
        self.closed = []
        self.opened = 0
        self.ticks = 0
        self.closed_action = Action.NONE

    def on_opened(self, conn):
        self.opened += 1
        return self.greeting, Action.NONE

    def on_closed(self, conn, err):
        self.closed.append(err)
        return self.closed_action

    def react(self, packet, conn):
        self.packets.append(packet)
        if packet is None:
            return b"woken", self.react_action
        return (packet if self.echo else None), self.react_action


def _recv_exact(sock, n):
    data = b""
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            break
        data += chunk
    return data


def _wait_readable(sock):
    ready, _, _ = select.select([sock], [], [], 2)
    assert ready


@pytest.fixture
def pair():
    server, client = socket.socketpair()
    server.setblocking(False)
    client.settimeout(2)
    yield server, client
    server.close()
    client.close()


def _make(handler, server, codec=None):
    loop = EventLoop(None, 0, handler, codec, 1024, 0)
    conn = Connection(server, loop, "peer", codec)
    loop.register(conn)
    return loop, conn


def test_register_sends_greeting_and_counts(pair):
    server, client = pair
    handler = Recorder(greeting=b"sweetness\r\n")
    loop, conn = _make(handler, server)
    assert _recv_exact(client, 11) == b"sweetness\r\n"
    assert conn.opened
    assert loop.count_connections() == 1
    assert handler.opened == 1


def test_loop_read_echoes(pair):
    server, client = pair
    handler = Recorder()
    loop, conn = _make(handler, server)
    client.sendall(b"hello")
    _wait_readable(server)
    assert loop.loop_read(conn) is None
    assert _recv_exact(client, 5) == b"hello"
    assert handler.packets == [b"hello"]


def test_loop_read_keeps_partial_frame(pair):
    server, client = pair
    handler = Recorder(echo=False)
    loop, conn = _make(handler, server, LineBasedFrameCodec())
    client.sendall(b"ab\ncd")
    _wait_readable(server)
    loop.loop_read(conn)
    assert handler.packets == [b"ab"]
    assert conn.buffer_length() == 2
    assert conn.read() == b"cd"


def test_react_close_echoes_then_closes(pair):
    server, client = pair
    handler = Recorder(react_action=Action.CLOSE)
    loop, conn = _make(handler, server)
    client.sendall(b"bye")
    _wait_readable(server)
    loop.loop_read(conn)
    assert _recv_exact(client, 3) == b"bye"
    assert client.recv(10) == b""
    assert handler.closed == [None]
    assert loop.count_connections() == 0
    assert loop.connections == {}


def test_react_shutdown_raises(pair):
    server, client = pair
    handler = Recorder(react_action=Action.SHUTDOWN)
    loop, conn = _make(handler, server)
    client.sendall(b"x")
    _wait_readable(server)
    with pytest.raises(ServerShutdown):
        loop.loop_read(conn)


def test_peer_close_closes_connection(pair):
    server, client = pair
    handler = Recorder()
    loop, conn = _make(handler, server)
    client.shutdown(socket.SHUT_WR)
    _wait_readable(server)
    loop.loop_read(conn)
    assert handler.closed == [None]
    assert loop.count_connections() == 0


def test_on_closed_shutdown_raises(pair):
    server, _ = pair
    handler = Recorder()
    handler.closed_action = Action.SHUTDOWN
    loop, conn = _make(handler, server)
    with pytest.raises(ServerShutdown):
        loop.loop_close_conn(conn, None)
    assert loop.count_connections() == 0


def test_close_of_unopened_connection_is_ignored(pair):
    server, _ = pair
    handler = Recorder()
    loop = EventLoop(None, 0, handler, None, 1024, 0)
    conn = Connection(server, loop, "peer", None)
    assert loop.loop_close_conn(conn, None) is None
    assert handler.closed == []


def test_close_flushes_pending_output(pair):
    server, client = pair
    handler = Recorder()
    loop, conn = _make(handler, server)
    conn.outbound.extend(b"leftover")
    assert loop.loop_close_conn(conn, None) is None
    assert handler.closed == [None]
    assert loop.count_connections() == 0
    assert _recv_exact(client, 8) == b"leftover"
    assert client.recv(10) == b""


def test_loop_write_drains_outbound(pair):
    server, client = pair
    handler = Recorder()
    loop, conn = _make(handler, server)
    conn.outbound.extend(b"pending")
    loop.loop_write(conn)
    assert _recv_exact(client, 7) == b"pending"
    assert len(conn.outbound) == 0


def test_loop_wake_reacts_on_live_and_ignores_stale(pair):
    server, client = pair
    handler = Recorder()
    loop, conn = _make(handler, server)
    loop.loop_wake(conn)
    assert handler.packets == [None]
    assert _recv_exact(client, 5) == b"woken"
    loop.loop_close_conn(conn, None)
    assert loop.loop_wake(conn) is None
    assert handler.packets == [None]


def test_handle_action(pair):
    server, _ = pair
    handler = Recorder()
    loop, conn = _make(handler, server)
    assert loop.handle_action(conn, Action.NONE) is None
    assert loop.count_connections() == 1
    with pytest.raises(ServerShutdown):
        loop.handle_action(conn, Action.SHUTDOWN)
    loop.handle_action(conn, Action.CLOSE)
    assert loop.count_connections() == 0


def test_close_all_conns():
    handler = Recorder()
    loop = EventLoop(None, 0, handler, None, 1024, 0)
    pairs = [socket.socketpair() for _ in range(3)]
    try:
        for server, _ in pairs:
            server.setblocking(False)
            loop.register(Connection(server, loop, "peer", None))
        assert loop.count_connections() == 3
        loop.close_all_conns()
        assert loop.count_connections() == 0
        assert len(handler.closed) == 3
    finally:
        for server, client in pairs:
            server.close()
            client.close()


def test_udp_read_echoes():
    listener = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    listener.bind(("127.0.0.1", 0))
    listener.setblocking(False)
    client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client.bind(("127.0.0.1", 0))
    client.settimeout(2)
    try:
        handler = Recorder()
        loop = EventLoop(listener, 0, handler, None, 1024, 0)
        assert loop.network == "udp"
        client.sendto(b"dgram", listener.getsockname())
        _wait_readable(listener)
        loop.loop_accept()
        data, addr = client.recvfrom(64)
        assert data == b"dgram"
        assert addr == listener.getsockname()
        assert handler.packets == [b"dgram"]
    finally:
        listener.close()
        client.close()


def test_run_serves_tcp_and_stops():
    listener = socket.create_server(("127.0.0.1", 0))
    listener.setblocking(False)
    handler = Recorder(greeting=b"hi\n")
    loop = EventLoop(listener, 0, handler, None, 4096, 60)
    thread = threading.Thread(target=loop.run, daemon=True)
    thread.start()
    client = socket.create_connection(listener.getsockname(), timeout=2)
    try:
        assert _recv_exact(client, 3) == b"hi\n"
        client.sendall(b"ping")
        assert _recv_exact(client, 4) == b"ping"
        loop.stop()
        thread.join(2)
        assert not thread.is_alive()
        assert loop.count_connections() == 0
        assert handler.closed == [None]
    finally:
        client.close()
        listener.close()


def test_urgent_tasks_run_first():
    loop = EventLoop(None, 0, Recorder(), None, 1024, 0)
    results = []

    def shutdown(_):
        raise ServerShutdown()

    loop.trigger(results.append, "a")
    loop.urgent_trigger(results.append, "b")
    loop.trigger(shutdown, None)
    thread = threading.Thread(target=loop.run, daemon=True)
    thread.start()
    thread.join(2)
    assert not thread.is_alive()
    assert results == ["b", "a"]


def test_ticker_shutdown_stops_loop():
    class Ticker(Recorder):
        def tick(self):
            self.ticks += 1
            if self.ticks >= 3:
                return 0.01, Action.SHUTDOWN
            return 0.01, Action.NONE

    handler = Ticker()
    loop = EventLoop(None, 0, handler, None, 1024, 0)
    stop_event = threading.Event()
    runner = threading.Thread(target=loop.run, daemon=True)
    ticker = threading.Thread(target=loop.loop_ticker, args=(stop_event,), daemon=True)
    runner.start()
    ticker.start()
    runner.join(2)
    stop_event.set()
    ticker.join(2)
    assert not runner.is_alive()
    assert not ticker.is_alive()
    assert handler.ticks >= 3