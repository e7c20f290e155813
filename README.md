# reactornet

Building blocks for event-driven socket servers: an event loop that
multiplexes non-blocking TCP, UDP and Unix domain sockets with the standard
`selectors` module, connection objects that buffer inbound and outbound data,
an event-handler interface with callbacks, and codecs that split a byte
stream into frames.

The package has no third-party dependencies. The optional `test` extra pulls
in pytest for the test suite.

## Event handlers

Subclass `EventServer` from `reactornet.events` and override the callbacks
you need. Callbacks that can steer the connection or the loop return an
`Action`:

- `Action.NONE` – carry on,
- `Action.CLOSE` – close this connection,
- `Action.SHUTDOWN` – stop the event loop.

```python
from reactornet.events import Action, EventServer


class Echo(EventServer):
    def on_opened(self, conn):
        # Sent as is, without going through the codec.
        return b"welcome\r\n", Action.NONE

    def react(self, packet, conn):
        # Returned bytes are encoded by the codec and sent back.
        return packet, Action.NONE

    def tick(self):
        # Delay in seconds until the next tick.
        return 1.0, Action.NONE
```

| callback | fired by the event loop when |
| --- | --- |
| `on_opened(conn)` | a connection has been opened |
| `on_closed(conn, err)` | a connection has been closed; `err` is the last error or `None` |
| `pre_write(conn)` | data is about to be written to the peer |
| `after_write(conn, data)` | data has just been written to the peer |
| `react(packet, conn)` | a frame has arrived, or `packet` is `None` after `conn.wake()` |
| `tick()` | periodically, while `loop_ticker` runs |

`on_init_complete(server)` and `on_shutdown(server)` are part of the interface
but the event loop never calls them; call them yourself if your own startup
and teardown code needs them.

The defaults of `EventServer` take no action. They keep `writes_in_flight`,
counting writes started by `pre_write` and not yet finished by `after_write`;
`on_shutdown` resets it to zero.

`parse_proto_addr` splits an address of the form `scheme://address`,
lower-casing it and falling back to `tcp` when no scheme is given:

```python
from reactornet.events import parse_proto_addr

parse_proto_addr("udp://:9000")   # ("udp", ":9000")
parse_proto_addr("127.0.0.1:80")  # ("tcp", "127.0.0.1:80")
```

## Running an event loop

`reactornet.eventloop.EventLoop` serves one bound, non-blocking listening
socket. Its network (`tcp`, `udp` or `unix`) is taken from the socket itself.

```python
import socket
import threading

from reactornet.codec import LineBasedFrameCodec
from reactornet.eventloop import EventLoop

listener = socket.create_server(("127.0.0.1", 9000))
listener.setblocking(False)

loop = EventLoop(listener, 0, Echo(), LineBasedFrameCodec(), read_buffer_cap=0x10000, tcp_keepalive=60)
stop_ticking = threading.Event()
threading.Thread(target=loop.loop_ticker, args=(stop_ticking,), daemon=True).start()

try:
    loop.run()  # returns after loop.stop() or an Action.SHUTDOWN
finally:
    stop_ticking.set()
    listener.close()
```

- `EventLoop(listener, index, handler, codec=None, read_buffer_cap=0x10000, tcp_keepalive=0)`:
  `index` names the loop in log messages; with no codec, connections use
  `BuiltInFrameCodec`; a `read_buffer_cap` of zero or less means 64 KiB; a
  positive `tcp_keepalive` (seconds) turns on TCP keep-alive for accepted
  TCP connections.
- `run()` serves events until `stop()` is called or a callback asks for
  shutdown. On the way out it closes every connection and its own selector;
  the listener stays open and is yours to close. A loop that has run cannot
  be run again.
- `stop()` asks a running loop to exit; it can be called from any thread.
- `count_connections()` is the number of open connections.
- `trigger(callback, arg)` and `urgent_trigger(callback, arg)` queue
  `callback(arg)` to run on the loop's thread, at the back or the front of
  the queue.
- `loop_ticker(stop_event)` calls `tick()` until `stop_event` is set; when
  `tick()` returns `Action.SHUTDOWN` it queues an urgent task that stops the
  loop.
- `register(conn)` starts serving a `Connection` accepted elsewhere.
- `close_all_conns()` closes every connection regardless of what
  `on_closed` returns.

The per-event handlers `loop_accept`, `loop_open`, `loop_read`,
`loop_write`, `loop_close_conn`, `loop_wake`, `loop_read_udp` and
`handle_action` are public as well. When a callback returns
`Action.SHUTDOWN` they raise `ServerShutdown`, which `run()` catches to end
the loop.

On a UDP listener each datagram is handed to `react` with a short-lived
connection for its sender; the returned bytes go back with `send_to`.

## Connections

Inside a callback, `conn` is a `reactornet.connection.Connection`. Its
`context` attribute holds any value you like; `local_addr` and `remote_addr`
are the two socket addresses. Inbound data is exposed without being consumed
until you say so:

- `read()` – all buffered inbound bytes,
- `read_n(n)` – up to `n` bytes as `(size, data)`; `n <= 0` means all,
- `shift_n(n)` – discard `n` bytes and return how many went; `n <= 0` or more
  than is buffered discards everything,
- `reset_buffer()` – discard everything,
- `buffer_length()` – the number of buffered bytes.

`write(buf)` encodes and sends at once, keeping in `outbound` whatever the
socket does not take; the loop flushes it when the socket becomes writable.
From other threads use `async_write(buf)`, `wake()` (runs `react` with no
packet, ahead of other queued tasks) and `close()`; these are queued onto the
owning loop. `async_write` does nothing once the connection is closed, and a
wake for a connection that has since been closed is ignored.

## Codecs

Codecs in `reactornet.codec` have `encode(conn, buf)` and `decode(conn)`:

- `BuiltInFrameCodec` – passes data through; a decode takes all buffered data,
- `LineBasedFrameCodec` – frames ending in `\n`,
- `DelimiterBasedFrameCodec(delimiter)` – frames ending in one chosen byte,
- `FixedLengthFrameCodec(frame_length)` – frames of a fixed size,
- `LengthFieldBasedFrameCodec(encoder_config, decoder_config)` – frames with
  a 1, 2, 3, 4 or 8 byte length field, set up with `EncoderConfig` and
  `DecoderConfig` and a `ByteOrder` (`BIG` or `LITTLE`).

```python
from reactornet.codec import (
    ByteOrder, DecoderConfig, EncoderConfig, LengthFieldBasedFrameCodec, LineBasedFrameCodec,
)

LineBasedFrameCodec().encode(None, b"hello")  # b"hello\n"

codec = LengthFieldBasedFrameCodec(
    EncoderConfig(byte_order=ByteOrder.BIG, length_field_length=2),
    DecoderConfig(byte_order=ByteOrder.BIG, length_field_length=2, initial_bytes_to_strip=2),
)
codec.encode(None, b"abc")  # b"\x00\x03abc"
```

`read_uint24` and `write_uint24` convert 3-byte integers, and `InnerBuffer`
is a read cursor over bytes whose `read_n` raises `ValueError` for a negative
length or one past the end.

When a codec cannot produce a frame it raises an error from
`reactornet.errors` derived from `CodecError`: `UnexpectedEOF`,
`DelimiterNotFound`, `CRLFNotFound`, `InvalidFixedLength`,
`UnsupportedLength` or `TooLessLength`; a length too large for its field
raises `CodecError` itself. Connections treat any `CodecError` while decoding
as "no complete frame yet" and keep the data for the next read.

## Errors

Every exception of the package derives from `reactornet.errors.GnetError`
and carries a default message. Besides the codec errors there are
`ServerShutdown`, `ServerInShutdown`, `AcceptSocketError`,
`TooManyEventLoopThreads`, `UnsupportedProtocol` (with
`UnsupportedTCPProtocol`, `UnsupportedUDPProtocol` and
`UnsupportedUDSProtocol`), `UnsupportedPlatform`, `ConnectionClosed`,
`ShortWritev` and `ShortReadv`.

## What the package does not do

There is no single call that starts a whole server from an address string:
nothing here parses the address into a listening socket for you, spreads
connections over several event loops, balances load between them, offers
server options or logging setup, or stops a server by its address. You
create the listening socket, build one `EventLoop` per socket and run each
on a thread of your own. There is no command-line program.