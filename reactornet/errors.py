"""Exceptions raised by the server, its connections and its codecs."""

from __future__ import annotations


class GnetError(Exception):
    """Base class of every error raised by this package."""

    default_message = "network engine error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(self.default_message if message is None else message)


class ServerShutdown(GnetError):
    """The server is closing."""

    default_message = "server is going to be shutdown"


class ServerInShutdown(GnetError):
    """The server was asked to shut down more than once."""

    default_message = "server is already in shutdown"


class AcceptSocketError(GnetError):
    """A new connection could not be accepted."""

    default_message = "accept a new connection error"


class TooManyEventLoopThreads(GnetError):
    """More than 10,000 event loops were requested with thread locking on."""

    default_message = "too many event-loops under LockOSThread mode"


class UnsupportedProtocol(GnetError):
    """The network scheme of an address is not supported."""

    default_message = "only unix, tcp/tcp4/tcp6, udp/udp4/udp6 are supported"


class UnsupportedTCPProtocol(UnsupportedProtocol):
    """The TCP flavour of an address is not supported."""

    default_message = "only tcp/tcp4/tcp6 are supported"


class UnsupportedUDPProtocol(UnsupportedProtocol):
    """The UDP flavour of an address is not supported."""

    default_message = "only udp/udp4/udp6 are supported"


class UnsupportedUDSProtocol(UnsupportedProtocol):
    """The Unix-socket flavour of an address is not supported."""

    default_message = "only unix is supported"


class UnsupportedPlatform(GnetError):
    """The current platform is not supported."""

    default_message = "unsupported platform in gnet"


class ConnectionClosed(GnetError):
    """The event loop received a connection that is already closed."""

    default_message = "connection is closed"


class CodecError(GnetError):
    """Base class of the errors raised while encoding or decoding frames."""

    default_message = "codec error"


class InvalidFixedLength(CodecError):
    """Outgoing data is not a multiple of the fixed frame length."""

    default_message = "invalid fixed length of bytes"


class UnexpectedEOF(CodecError):
    """There is not enough buffered data to decode a frame."""

    default_message = "there is no enough data"


class DelimiterNotFound(CodecError):
    """The frame delimiter is not in the buffered data."""

    default_message = "there is no such a delimiter"


class CRLFNotFound(CodecError):
    """No line terminator is in the buffered data."""

    default_message = "there is no CRLF"


class UnsupportedLength(CodecError):
    """The configured length field size is not 1, 2, 3, 4 or 8."""

    default_message = "unsupported lengthFieldLength. (expected: 1, 2, 3, 4, or 8)"


class TooLessLength(CodecError):
    """The adjusted frame length is negative."""

    default_message = "adjusted frame length is less than zero"


class ShortWritev(GnetError):
    """A vectored write did not send all the data."""

    default_message = "short writev"


class ShortReadv(GnetError):
    """A vectored read did not fill all the buffers."""

    default_message = "short readv"