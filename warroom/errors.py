"""War-room error types."""

from __future__ import annotations

from typing import Optional


class WarroomError(Exception):
    """Base class for failures inside a refresh attempt.

    Attributes:
        message: Human-readable description, safe to show to an operator.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(WarroomError):
    """A required setting is missing. Fatal to one refresh, not to the process."""


class UpstreamAuthError(WarroomError):
    """The app access token could not be issued."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class UpstreamFetchError(WarroomError):
    """An upstream data call failed (non-2xx, timeout or malformed body).

    ``status`` is None when no HTTP response was received.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ChannelNotFoundError(UpstreamFetchError):
    """The configured login does not resolve to a channel."""

    def __init__(self, login: str) -> None:
        super().__init__(f"User not found: {login}", status=404)
        self.login = login


class StoreError(WarroomError):
    """A read or write against the key-value store failed."""
