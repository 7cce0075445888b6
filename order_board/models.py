"""Core data models for the order board."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class RatingStatus(str, Enum):
    BANNED = "BANNED"
    LEVEL_DOWN = "LEVEL_DOWN"
    LEVEL_UP = "LEVEL_UP"
    SUCCESS = "SUCCESS"


class WizardStep(str, Enum):
    INITIAL_FORM = "initial_form"
    DATE_SELECTION = "date_selection"
    ROLE_CATEGORY = "role_category"
    LEVEL_SELECTION = "level_selection"
    CONFIRMATION_FORM = "confirmation_form"
    PREVIEW = "preview"


class PreviewAction(str, Enum):
    PUBLISH = "publish"
    CANCEL = "cancel"


@dataclass(frozen=True)
class RequiredRole:
    """A skill tag, optionally resolved to a guild role id."""

    name: str
    role_id: Optional[str] = None

    @property
    def mention(self) -> str:
        return f"<@&{self.role_id}>" if self.role_id else self.name


@dataclass(frozen=True)
class RoleRef:
    """Entry of the guild role directory fed to the category classifier."""

    role_id: str
    name: str
    position: int = 0
    managed: bool = False


@dataclass
class Order:
    order_id: str
    admin_id: str
    client_name: str
    compensation: str
    description: str
    level: int
    status: OrderStatus = OrderStatus.OPEN
    assigned_to: Optional[str] = None
    deadline: Optional[date] = None
    required_roles: List[RequiredRole] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    message_id: Optional[int] = None
    channel_id: Optional[int] = None
    private_channel_id: Optional[int] = None
    last_verification_request: Optional[datetime] = None
    last_deadline_reminder: Optional[datetime] = None
    created_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Coder:
    user_id: str
    active_order_id: Optional[str] = None
    completed_orders: int = 0
    xp: int = 0
    level: int = 1
    banned: bool = False
    last_active: Optional[datetime] = None


@dataclass(frozen=True)
class ProjectRating:
    """Append-only audit record of one admin evaluation."""

    project_id: str
    coder_id: str
    admin_id: str
    rating: int
    xp_earned: int
    level_before: int
    level_after: int
    status: RatingStatus
    rated_at: datetime


@dataclass
class OrderDraft:
    """Fields accumulated by the creation wizard before an order exists."""

    client_name: str = ""
    compensation: str = ""
    description: str = ""
    deadline: Optional[date] = None
    required_roles: List[RequiredRole] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    level: Optional[int] = None
    level_clamped: bool = False
    order_id: Optional[str] = None

    def add_role(self, role: RequiredRole) -> bool:
        """Add a role unless one with the same id or name is already present."""

        for existing in self.required_roles:
            if role.role_id and existing.role_id == role.role_id:
                return False
            if existing.name.lower() == role.name.lower():
                return False
        self.required_roles.append(role)
        return True


@dataclass
class OrderCreationSession:
    user_id: str
    channel_id: int
    step: WizardStep = WizardStep.INITIAL_FORM
    data: OrderDraft = field(default_factory=OrderDraft)
    started_at: Optional[datetime] = None
    # Runtime only; never persisted.
    expiry: Optional["asyncio.Task[None]"] = field(default=None, repr=False, compare=False)

    def cancel_expiry(self) -> None:
        task = self.expiry
        self.expiry = None
        if task is not None and not task.done():
            task.cancel()


__all__ = [
    "OrderStatus",
    "RatingStatus",
    "WizardStep",
    "PreviewAction",
    "RequiredRole",
    "RoleRef",
    "Order",
    "Coder",
    "ProjectRating",
    "OrderDraft",
    "OrderCreationSession",
]
