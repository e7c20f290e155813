"""Event loop, connections, event handlers and frame codecs for non-blocking socket servers."""

__version__ = "0.1.0"

__all__ = ["codec", "connection", "errors", "eventloop", "events"]