"""Order creation wizard.

Each admin drives at most one :class:`OrderCreationSession` through the steps
initial form -> deadline -> skill roles -> level -> confirmation form -> preview.
Sessions live in an injected :class:`SessionStore`; losing one is an error the
user recovers from by running ``/add`` again.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import sqlite3
import string
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from ..config import ROLE_CATEGORY_ORDER, Settings
from ..errors import (
    ChannelUnavailableError,
    PublishError,
    SessionLostError,
    StaleInteractionError,
    ValidationError,
)
from ..models import (
    Order,
    OrderCreationSession,
    OrderDraft,
    OrderStatus,
    PreviewAction,
    RequiredRole,
    RoleRef,
    WizardStep,
)
from ..state import OrderStore
from ..telemetry import TelemetryCollector, get_telemetry
from . import dates
from .roles import KeywordRoleClassifier, RoleClassifier, roles_in_category
from .sessions import DateSelection, DateSelectionStore, SessionStore

logger = logging.getLogger(__name__)

MAX_LEVEL = 6
ELEVATED_LEVEL = 6
NO_ROLES_PLACEHOLDER = "none"

_BASE36 = string.digits + string.ascii_lowercase

# (attribute, label, max length) in the order the text path asks for them.
TEXT_FIELDS = (
    ("client_name", "Client name", 100),
    ("compensation", "Compensation", 100),
    ("description", "Description", 1000),
)

TEXT_PROMPTS = {
    "client_name": "What is the client's name?",
    "compensation": "What is the compensation for this order?",
    "description": "Describe the work to be done.",
}


def generate_order_id() -> str:
    """Microsecond timestamp suffix plus six random base36 characters."""

    stamp = str(time.time_ns() // 1000)[-10:]
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{stamp}-{suffix}"


def parse_list(text: Optional[str]) -> List[str]:
    """Split comma separated input, dropping blanks and duplicates."""

    items: List[str] = []
    seen = set()
    for raw in (text or "").split(","):
        value = raw.strip()
        key = value.lower()
        if value and key not in seen:
            seen.add(key)
            items.append(value)
    return items


def _clean_text(value: Optional[str], label: str, limit: int) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} is required.")
    if len(cleaned) > limit:
        raise ValidationError(f"{label} must be at most {limit} characters.")
    return cleaned


class AnnouncementPublisher:
    """Posts the public announcement of a freshly created order."""

    async def publish(self, order: Order, channel_id: int) -> int:
        """Return the message id; raise ChannelUnavailableError if the channel is unreachable."""

        raise NotImplementedError


@dataclass(frozen=True)
class TextReply:
    message: str
    step: WizardStep


@dataclass(frozen=True)
class LevelChoice:
    level: int
    clamped: bool


@dataclass(frozen=True)
class Preview:
    order_id: str
    draft: OrderDraft
    channel_id: Optional[int]
    level_clamped: bool
    expires_in: float


@dataclass(frozen=True)
class PublishResult:
    order: Order
    channel_id: int
    message_id: int


ExpiryCallback = Callable[[], Awaitable[None]]


class OrderWizard:
    """Coordinates the per-user order creation steps."""

    def __init__(
        self,
        store: OrderStore,
        sessions: SessionStore,
        settings: Settings,
        *,
        classifier: Optional[RoleClassifier] = None,
        date_selections: Optional[DateSelectionStore] = None,
        level_channels: Optional[Mapping[int, int]] = None,
        default_channel_id: Optional[int] = None,
        telemetry: Optional[TelemetryCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._settings = settings
        self._classifier = classifier or KeywordRoleClassifier(settings.role_categories)
        self._dates = date_selections or DateSelectionStore()
        self._level_channels = dict(level_channels if level_channels is not None else settings.level_channels)
        self._default_channel_id = (
            default_channel_id if default_channel_id is not None else settings.default_channel_id
        )
        self._telemetry = telemetry or get_telemetry()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.confirmation_timeout = settings.confirmation_timeout_seconds

    # Session plumbing --------------------------------------------------
    def session(self, user_id: str) -> Optional[OrderCreationSession]:
        return self._sessions.get(user_id)

    def _require(self, user_id: str, *steps: WizardStep) -> OrderCreationSession:
        session = self._sessions.get(user_id)
        if session is None:
            raise SessionLostError(user_id)
        if steps and session.step not in steps:
            raise StaleInteractionError(
                "This step has already been completed. Continue from the latest prompt."
            )
        return session

    def _advance(self, session: OrderCreationSession, step: WizardStep) -> None:
        logger.debug("Session %s: %s -> %s", session.user_id, session.step.value, step.value)
        session.step = step
        self._sessions.update(session.user_id, session)

    def _teardown(self, user_id: str, event: str) -> bool:
        existed = self._sessions.delete(user_id)
        self._dates.clear(user_id)
        if existed:
            self._telemetry.track_session_event(event, user_id)
        return existed

    def start(self, user_id: str, channel_id: int) -> OrderCreationSession:
        session = OrderCreationSession(
            user_id=user_id,
            channel_id=channel_id,
            started_at=self._clock(),
        )
        self._sessions.set(user_id, session)
        self._dates.clear(user_id)
        self._telemetry.track_session_event("start", user_id)
        logger.info("Order wizard started by %s in channel %s", user_id, channel_id)
        return session

    def cancel(self, user_id: str) -> bool:
        """Discard the user's session, if any, without persisting anything."""

        return self._teardown(user_id, "cancel")

    def abort(self, user_id: str) -> bool:
        """Tear down after an error so the user can restart cleanly."""

        return self._teardown(user_id, "error")

    # Step 1: initial form ----------------------------------------------
    def submit_initial(
        self,
        user_id: str,
        *,
        client_name: str,
        compensation: str,
        description: str,
    ) -> OrderDraft:
        session = self._require(user_id, WizardStep.INITIAL_FORM)
        values = {
            "client_name": client_name,
            "compensation": compensation,
            "description": description,
        }
        cleaned = {attr: _clean_text(values[attr], label, limit) for attr, label, limit in TEXT_FIELDS}
        for attr, value in cleaned.items():
            setattr(session.data, attr, value)
        self._advance(session, WizardStep.DATE_SELECTION)
        return session.data

    def handle_text(self, user_id: str, channel_id: int, text: str) -> Optional[TextReply]:
        """Consume a plain chat message as wizard input.

        Returns ``None`` when the message does not belong to an active session
        in its bound channel.
        """

        session = self._sessions.get(user_id)
        if session is None or session.channel_id != channel_id:
            return None
        if session.step is not WizardStep.INITIAL_FORM:
            return TextReply(
                "Your order is waiting on the menu above. Use it to continue, or /cancel_active to stop.",
                session.step,
            )
        draft = session.data
        for attr, label, limit in TEXT_FIELDS:
            if not getattr(draft, attr):
                setattr(draft, attr, _clean_text(text, label, limit))
                break
        missing = [attr for attr, _, _ in TEXT_FIELDS if not getattr(draft, attr)]
        if missing:
            self._sessions.update(user_id, session)
            return TextReply(TEXT_PROMPTS[missing[0]], session.step)
        self._advance(session, WizardStep.DATE_SELECTION)
        return TextReply("Thanks! Now choose a deadline, or skip it.", session.step)

    # Step 2: deadline --------------------------------------------------
    def year_options(self) -> List[int]:
        return dates.year_options(self._clock().date())

    def select_year(self, user_id: str, year: int) -> DateSelection:
        self._require(user_id, WizardStep.DATE_SELECTION)
        if year not in self.year_options():
            raise ValidationError(f"Year {year} is outside the selectable range.")
        selection = self._dates.get(user_id)
        selection.year = year
        selection.day = None
        return selection

    def select_month(self, user_id: str, month: int) -> DateSelection:
        self._require(user_id, WizardStep.DATE_SELECTION)
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month}")
        selection = self._dates.get(user_id)
        selection.month = month
        selection.day = None
        return selection

    def date_selection(self, user_id: str) -> Optional[DateSelection]:
        return self._dates.peek(user_id)

    def day_choices(self, user_id: str) -> List[List[int]]:
        selection = self._dates.peek(user_id)
        if selection is None or selection.year is None or selection.month is None:
            return []
        return dates.day_option_chunks(selection.year, selection.month)

    def select_day(self, user_id: str, day: int) -> date:
        session = self._require(user_id, WizardStep.DATE_SELECTION)
        selection = self._dates.peek(user_id)
        if selection is None or selection.year is None or selection.month is None:
            raise ValidationError("Pick a year and a month first.")
        deadline = dates.build_deadline(
            selection.year,
            selection.month,
            day,
            today=self._clock().date(),
        )
        selection.day = day
        session.data.deadline = deadline
        self._sessions.update(user_id, session)
        return deadline

    def continue_after_date(self, user_id: str) -> OrderCreationSession:
        session = self._require(user_id, WizardStep.DATE_SELECTION)
        if session.data.deadline is None:
            raise ValidationError("Pick a day before continuing, or skip the deadline.")
        self._dates.clear(user_id)
        self._advance(session, WizardStep.ROLE_CATEGORY)
        return session

    def skip_date(self, user_id: str) -> OrderCreationSession:
        session = self._require(user_id, WizardStep.DATE_SELECTION)
        session.data.deadline = None
        self._dates.clear(user_id)
        self._advance(session, WizardStep.ROLE_CATEGORY)
        return session

    # Step 3: skill roles -----------------------------------------------
    @property
    def categories(self) -> List[str]:
        return list(ROLE_CATEGORY_ORDER)

    def select_category(self, user_id: str, category: str, directory: Iterable[RoleRef]) -> List[RoleRef]:
        self._require(user_id, WizardStep.ROLE_CATEGORY)
        return roles_in_category(
            category,
            directory,
            self._classifier,
            excluded_ids=self._settings.excluded_role_ids,
        )

    def select_roles(
        self,
        user_id: str,
        role_ids: Iterable[str],
        directory: Iterable[RoleRef],
    ) -> List[RequiredRole]:
        """Add picked roles to the draft; repeated picks are ignored."""

        session = self._require(user_id, WizardStep.ROLE_CATEGORY)
        by_id: Dict[str, RoleRef] = {role.role_id: role for role in directory}
        added: List[RequiredRole] = []
        for role_id in role_ids:
            if role_id == NO_ROLES_PLACEHOLDER:
                continue
            role = by_id.get(role_id)
            if role is None:
                logger.warning("Ignoring unknown role id %s picked by %s", role_id, user_id)
                continue
            required = RequiredRole(name=role.name, role_id=role.role_id)
            if session.data.add_role(required):
                added.append(required)
        self._sessions.update(user_id, session)
        return added

    def back_to_categories(self, user_id: str) -> List[RequiredRole]:
        session = self._require(user_id, WizardStep.ROLE_CATEGORY)
        return list(session.data.required_roles)

    def continue_to_level(self, user_id: str) -> OrderCreationSession:
        session = self._require(user_id, WizardStep.ROLE_CATEGORY)
        self._advance(session, WizardStep.LEVEL_SELECTION)
        return session

    def skip_roles(self, user_id: str) -> OrderCreationSession:
        session = self._require(user_id, WizardStep.ROLE_CATEGORY)
        session.data.required_roles = []
        self._advance(session, WizardStep.LEVEL_SELECTION)
        return session

    # Step 4: level -----------------------------------------------------
    @staticmethod
    def level_options(elevated: bool) -> List[int]:
        top = ELEVATED_LEVEL if elevated else ELEVATED_LEVEL - 1
        return list(range(1, top + 1))

    def select_level(self, user_id: str, level: int, *, elevated: bool) -> LevelChoice:
        # Re-picking while the confirmation form is open is allowed.
        session = self._require(user_id, WizardStep.LEVEL_SELECTION, WizardStep.CONFIRMATION_FORM)
        if not 1 <= level <= MAX_LEVEL:
            raise ValidationError(f"Invalid level: {level}")
        clamped = False
        if level == ELEVATED_LEVEL and not elevated:
            level = ELEVATED_LEVEL - 1
            clamped = True
        session.data.level = level
        session.data.level_clamped = clamped
        self._advance(session, WizardStep.CONFIRMATION_FORM)
        return LevelChoice(level=level, clamped=clamped)

    # Step 5: confirmation form and preview -----------------------------
    def confirmation_defaults(self, user_id: str) -> Dict[str, str]:
        session = self._require(user_id, WizardStep.CONFIRMATION_FORM)
        draft = session.data
        return {
            "client_name": draft.client_name,
            "compensation": draft.compensation,
            "description": draft.description,
            "tags": ", ".join(draft.tags),
            "required_roles": ", ".join(role.name for role in draft.required_roles),
        }

    def publication_channels(self, level: int) -> List[int]:
        candidates: List[int] = []
        for channel_id in (self._level_channels.get(level), self._default_channel_id):
            if channel_id is not None and channel_id not in candidates:
                candidates.append(channel_id)
        return candidates

    async def submit_confirmation(
        self,
        user_id: str,
        *,
        client_name: str,
        compensation: str,
        description: str,
        tags_text: str,
        roles_text: str,
        elevated: bool,
        resolve_role: Callable[[str], Optional[str]],
        on_expire: Optional[ExpiryCallback] = None,
    ) -> Preview:
        """Apply the final edits and arm the confirmation timer."""

        session = self._require(user_id, WizardStep.CONFIRMATION_FORM)
        draft = session.data
        values = {
            "client_name": client_name,
            "compensation": compensation,
            "description": description,
        }
        cleaned = {attr: _clean_text(values[attr], label, limit) for attr, label, limit in TEXT_FIELDS}
        if draft.level is None:
            raise ValidationError("Pick a level before confirming.")

        if draft.level == ELEVATED_LEVEL and not elevated:
            draft.level = ELEVATED_LEVEL - 1
            draft.level_clamped = True

        roles: List[RequiredRole] = []
        for name in parse_list(roles_text):
            name = name.lstrip("@").strip()
            if name:
                roles.append(RequiredRole(name=name, role_id=resolve_role(name)))

        for attr, value in cleaned.items():
            setattr(draft, attr, value)
        draft.tags = parse_list(tags_text)
        draft.required_roles = []
        for role in roles:
            draft.add_role(role)
        draft.order_id = generate_order_id()

        self._advance(session, WizardStep.PREVIEW)
        session.cancel_expiry()
        session.expiry = asyncio.create_task(
            self._expire_after(session, self.confirmation_timeout, on_expire)
        )
        channels = self.publication_channels(draft.level)
        return Preview(
            order_id=draft.order_id,
            draft=draft,
            channel_id=channels[0] if channels else None,
            level_clamped=draft.level_clamped,
            expires_in=self.confirmation_timeout,
        )

    async def _expire_after(
        self,
        session: OrderCreationSession,
        delay: float,
        on_expire: Optional[ExpiryCallback],
    ) -> None:
        await asyncio.sleep(delay)
        if self._sessions.get(session.user_id) is not session or session.step is not WizardStep.PREVIEW:
            return
        # Detach first so deleting the session does not cancel this task.
        session.expiry = None
        self._teardown(session.user_id, "expire")
        logger.info("Order preview for %s expired", session.user_id)
        if on_expire is not None:
            try:
                await on_expire()
            except Exception:
                logger.exception("Failed to mark preview for %s as expired", session.user_id)

    # Step 6: resolve the preview ---------------------------------------
    async def resolve(
        self,
        user_id: str,
        action: PreviewAction,
        publisher: Optional[AnnouncementPublisher] = None,
    ) -> Optional[PublishResult]:
        """Single exit of the preview state: publish or cancel.

        The session is torn down before any I/O so a duplicate click cannot
        publish twice.
        """

        session = self._require(user_id, WizardStep.PREVIEW)
        session.cancel_expiry()
        if action is PreviewAction.CANCEL:
            self._teardown(user_id, "cancel")
            return None
        if publisher is None:
            raise ValueError("A publisher is required to publish an order")
        self._teardown(user_id, "publish")
        return await self._publish(user_id, session.data, publisher)

    async def _publish(self, user_id: str, draft: OrderDraft, publisher: AnnouncementPublisher) -> PublishResult:
        order = Order(
            order_id=draft.order_id or generate_order_id(),
            admin_id=user_id,
            client_name=draft.client_name,
            compensation=draft.compensation,
            description=draft.description,
            level=int(draft.level or 1),
            status=OrderStatus.OPEN,
            deadline=draft.deadline,
            required_roles=list(draft.required_roles),
            tags=list(draft.tags),
        )
        try:
            self._store.create_order(order)
        except sqlite3.Error as exc:
            logger.exception("Failed to persist order %s", order.order_id)
            raise PublishError(
                "database",
                "The order could not be saved. Nothing was published; start again with /add.",
                order_persisted=False,
            ) from exc
        self._telemetry.track_order_transition(
            order.order_id, OrderStatus.OPEN.value, actor_id=user_id, level=order.level
        )

        channel_id, message_id = await self._announce(order, publisher)
        try:
            self._store.set_announcement(order.order_id, message_id, channel_id)
        except sqlite3.Error as exc:
            logger.exception("Failed to link announcement %s to order %s", message_id, order.order_id)
            raise PublishError(
                "message_link",
                f"Order `{order.order_id}` was published, but the announcement could not be linked to it. "
                "Cancelling it later may leave the announcement behind.",
                order_persisted=True,
            ) from exc
        order.channel_id = channel_id
        order.message_id = message_id
        logger.info("Order %s announced in channel %s", order.order_id, channel_id)
        return PublishResult(order=order, channel_id=channel_id, message_id=message_id)

    async def _announce(self, order: Order, publisher: AnnouncementPublisher) -> tuple[int, int]:
        candidates = self.publication_channels(order.level)
        for channel_id in candidates:
            try:
                message_id = await publisher.publish(order, channel_id)
            except ChannelUnavailableError:
                logger.warning("Announcement channel %s for order %s is unreachable", channel_id, order.order_id)
                continue
            except Exception as exc:
                logger.exception("Failed to announce order %s in channel %s", order.order_id, channel_id)
                raise PublishError(
                    "publish",
                    f"Order `{order.order_id}` was saved but its announcement failed to send.",
                    order_persisted=True,
                ) from exc
            return channel_id, message_id
        raise PublishError(
            "channel_not_found",
            f"Order `{order.order_id}` was saved but no announcement channel for level {order.level} could be found.",
            order_persisted=True,
        )


__all__ = [
    "OrderWizard",
    "AnnouncementPublisher",
    "TextReply",
    "LevelChoice",
    "Preview",
    "PublishResult",
    "generate_order_id",
    "parse_list",
    "TEXT_FIELDS",
    "NO_ROLES_PLACEHOLDER",
]
