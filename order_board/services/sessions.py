"""Session registry for in-progress order creation wizards.

The wizard only talks to :class:`SessionStore`; the bot injects the in-memory
implementation, which is sufficient for a single process running one event loop.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..errors import SessionExistsError, SessionLostError
from ..models import OrderCreationSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Interface for keyed wizard session storage."""

    def get(self, user_id: str) -> Optional[OrderCreationSession]:
        raise NotImplementedError

    def set(self, user_id: str, session: OrderCreationSession) -> None:
        """Insert a new session; fails if the user already has one."""

        raise NotImplementedError

    def update(self, user_id: str, session: OrderCreationSession) -> None:
        raise NotImplementedError

    def delete(self, user_id: str) -> bool:
        raise NotImplementedError

    def has(self, user_id: str) -> bool:
        return self.get(user_id) is not None


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, OrderCreationSession] = {}

    def get(self, user_id: str) -> Optional[OrderCreationSession]:
        return self._sessions.get(user_id)

    def set(self, user_id: str, session: OrderCreationSession) -> None:
        if user_id in self._sessions:
            raise SessionExistsError(user_id)
        self._sessions[user_id] = session

    def update(self, user_id: str, session: OrderCreationSession) -> None:
        if user_id not in self._sessions:
            raise SessionLostError(user_id)
        self._sessions[user_id] = session

    def delete(self, user_id: str) -> bool:
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        session.cancel_expiry()
        return True

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class DateSelection:
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None


class DateSelectionStore:
    """Transient per-user year/month/day picks, kept apart from the session."""

    def __init__(self) -> None:
        self._selections: Dict[str, DateSelection] = {}

    def get(self, user_id: str) -> DateSelection:
        return self._selections.setdefault(user_id, DateSelection())

    def peek(self, user_id: str) -> Optional[DateSelection]:
        return self._selections.get(user_id)

    def clear(self, user_id: str) -> None:
        self._selections.pop(user_id, None)


__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "DateSelection",
    "DateSelectionStore",
]
