"""Typed component identifiers.

Every button and select the bot sends carries a ``custom_id`` produced by
:func:`encode`. Incoming interactions are decoded once with :func:`decode` and
dispatched on the resulting dataclass type.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Optional, Type, Union, get_type_hints

from .models import PreviewAction

logger = logging.getLogger(__name__)

PREFIX = "ob"
SEPARATOR = ":"
MAX_CUSTOM_ID_LENGTH = 100


@dataclass(frozen=True)
class AcceptOrder:
    KIND: ClassVar[str] = "accept"
    order_id: str


@dataclass(frozen=True)
class CompleteOrder:
    KIND: ClassVar[str] = "complete"
    order_id: str


@dataclass(frozen=True)
class AdminComplete:
    KIND: ClassVar[str] = "admin_complete"
    order_id: str


@dataclass(frozen=True)
class RequestVerification:
    KIND: ClassVar[str] = "verify"
    order_id: str


@dataclass(frozen=True)
class RateProject:
    KIND: ClassVar[str] = "rate"
    order_id: str
    coder_id: str
    rating: int


@dataclass(frozen=True)
class ResolvePreview:
    KIND: ClassVar[str] = "preview"
    action: PreviewAction


@dataclass(frozen=True)
class CancelWizard:
    KIND: ClassVar[str] = "wizard_cancel"


@dataclass(frozen=True)
class PickYear:
    KIND: ClassVar[str] = "date_year"


@dataclass(frozen=True)
class PickMonth:
    KIND: ClassVar[str] = "date_month"


@dataclass(frozen=True)
class PickDay:
    KIND: ClassVar[str] = "date_day"
    part: int


@dataclass(frozen=True)
class ContinueAfterDate:
    KIND: ClassVar[str] = "date_continue"


@dataclass(frozen=True)
class SkipDate:
    KIND: ClassVar[str] = "date_skip"


@dataclass(frozen=True)
class PickCategory:
    KIND: ClassVar[str] = "category"


@dataclass(frozen=True)
class PickRoles:
    KIND: ClassVar[str] = "roles"
    category: str


@dataclass(frozen=True)
class BackToCategories:
    KIND: ClassVar[str] = "roles_back"


@dataclass(frozen=True)
class ContinueToLevel:
    KIND: ClassVar[str] = "roles_continue"


@dataclass(frozen=True)
class SkipRoles:
    KIND: ClassVar[str] = "roles_skip"


@dataclass(frozen=True)
class PickLevel:
    KIND: ClassVar[str] = "level"


@dataclass(frozen=True)
class OpenConfirmation:
    KIND: ClassVar[str] = "confirm_open"


Action = Union[
    AcceptOrder,
    CompleteOrder,
    AdminComplete,
    RequestVerification,
    RateProject,
    ResolvePreview,
    CancelWizard,
    PickYear,
    PickMonth,
    PickDay,
    ContinueAfterDate,
    SkipDate,
    PickCategory,
    PickRoles,
    BackToCategories,
    ContinueToLevel,
    SkipRoles,
    PickLevel,
    OpenConfirmation,
]

ACTION_TYPES: Dict[str, Type[Any]] = {cls.KIND: cls for cls in Action.__args__}


def encode(action: Action) -> str:
    parts = [PREFIX, action.KIND]
    for item in fields(action):
        value = getattr(action, item.name)
        parts.append(value.value if isinstance(value, PreviewAction) else str(value))
    custom_id = SEPARATOR.join(parts)
    if len(custom_id) > MAX_CUSTOM_ID_LENGTH:
        raise ValueError(f"custom_id too long: {custom_id}")
    return custom_id


def decode(custom_id: Optional[str]) -> Optional[Action]:
    """Parse a ``custom_id``; returns ``None`` for ids this bot did not produce."""

    if not custom_id:
        return None
    parts = custom_id.split(SEPARATOR)
    if len(parts) < 2 or parts[0] != PREFIX:
        return None
    cls = ACTION_TYPES.get(parts[1])
    if cls is None:
        logger.debug("Unknown interaction kind in %s", custom_id)
        return None
    values = parts[2:]
    declared = fields(cls)
    if len(values) != len(declared):
        logger.warning("Malformed custom_id %s", custom_id)
        return None
    hints = get_type_hints(cls)
    kwargs: Dict[str, Any] = {}
    try:
        for item, raw in zip(declared, values):
            kwargs[item.name] = hints[item.name](raw)
    except ValueError:
        logger.warning("Malformed custom_id %s", custom_id)
        return None
    return cls(**kwargs)


__all__ = [
    "Action",
    "ACTION_TYPES",
    "encode",
    "decode",
    "AcceptOrder",
    "CompleteOrder",
    "AdminComplete",
    "RequestVerification",
    "RateProject",
    "ResolvePreview",
    "CancelWizard",
    "PickYear",
    "PickMonth",
    "PickDay",
    "ContinueAfterDate",
    "SkipDate",
    "PickCategory",
    "PickRoles",
    "BackToCategories",
    "ContinueToLevel",
    "SkipRoles",
    "PickLevel",
    "OpenConfirmation",
]
