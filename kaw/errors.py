"""Exception types raised by the watcher.

Configuration errors are fatal at startup. Everything else is caught at the
reconciliation iteration boundary, logged, and retried on the next poll.
Filesystem failures use the built-in ``OSError`` family.
"""

from __future__ import annotations


class WatcherError(Exception):
    """Base class for all watcher errors."""


class ConfigError(WatcherError):
    """Missing or invalid configuration."""


class AuthError(WatcherError):
    """Credentials were rejected by the registry or the packages API."""


class NotFoundError(WatcherError):
    """The referenced package, owner or artifact does not exist."""


class ProtocolError(WatcherError):
    """Transport failure or an unexpected response shape."""


class ParseError(WatcherError):
    """A single file could not be parsed as a manifest."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path
