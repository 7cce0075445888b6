"""Exception hierarchy shared by the services and the Discord adapter.

Services raise these before mutating anything; the adapter turns each one into
a single ephemeral reply.
"""
from __future__ import annotations

from typing import Optional


class OrderBoardError(Exception):
    """Base class for all user-reportable failures."""


class ValidationError(OrderBoardError, ValueError):
    """Malformed or out-of-range user input."""


class StateError(OrderBoardError):
    """Action attempted against a session or order in the wrong state."""


class SessionExistsError(StateError):
    def __init__(self, user_id: str) -> None:
        super().__init__(
            "You already have an order in progress. Use /cancel_active to discard it first."
        )
        self.user_id = user_id


class SessionLostError(StateError):
    def __init__(self, user_id: str) -> None:
        super().__init__(
            "Your order session is no longer active. Start again with /add."
        )
        self.user_id = user_id


class StaleInteractionError(StateError):
    """An event for a wizard step the session has already moved past."""


class InvalidTransitionError(StateError):
    """Order status does not allow the requested transition."""


class CooldownError(StateError):
    def __init__(self, remaining_hours: int) -> None:
        super().__init__(
            f"A verification request was sent recently. Please wait {remaining_hours} more hour(s)."
        )
        self.remaining_hours = remaining_hours


class PermissionDeniedError(OrderBoardError):
    """Actor lacks the role or ownership required for the action."""


class NotFoundError(OrderBoardError):
    """A referenced order, coder or channel does not exist."""


class DependencyError(OrderBoardError):
    """Record store or messaging surface failure."""


class ChannelUnavailableError(DependencyError):
    def __init__(self, channel_id: Optional[int]) -> None:
        super().__init__(f"Channel {channel_id} could not be reached")
        self.channel_id = channel_id


class PublishError(DependencyError):
    """Publishing a confirmed draft failed part way through."""

    def __init__(self, kind: str, message: str, *, order_persisted: bool) -> None:
        super().__init__(message)
        self.kind = kind
        self.order_persisted = order_persisted


__all__ = [
    "OrderBoardError",
    "ValidationError",
    "StateError",
    "SessionExistsError",
    "SessionLostError",
    "StaleInteractionError",
    "InvalidTransitionError",
    "CooldownError",
    "PermissionDeniedError",
    "NotFoundError",
    "DependencyError",
    "ChannelUnavailableError",
    "PublishError",
]
