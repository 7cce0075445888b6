"""Application services layer.

The wizard, lifecycle and rating services hold the bot's rules; the Discord
adapter only translates interactions into calls on them.
"""

from .lifecycle import LifecycleResult, OrderLifecycle, Workspace
from .ratings import RatingOutcome, RatingService
from .sessions import DateSelectionStore, InMemorySessionStore, SessionStore
from .wizard import AnnouncementPublisher, OrderWizard

__all__ = [
    "AnnouncementPublisher",
    "DateSelectionStore",
    "InMemorySessionStore",
    "LifecycleResult",
    "OrderLifecycle",
    "OrderWizard",
    "RatingOutcome",
    "RatingService",
    "SessionStore",
    "Workspace",
]
