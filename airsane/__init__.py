"""HTTP server, HTML page building, access rules and network address notification."""

__version__ = "0.1.0"
__all__ = ["accessfile", "errorpage", "message", "netnotifier", "server", "webpage"]