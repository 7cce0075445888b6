"""Order lifecycle: acceptance, completion, cancellation and verification."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..config import Settings
from ..errors import (
    CooldownError,
    DependencyError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
)
from ..models import Order, OrderStatus
from ..state import OrderStore
from ..telemetry import TelemetryCollector, get_telemetry
from .dates import month_label

logger = logging.getLogger(__name__)


class Workspace:
    """Messaging surface the lifecycle needs from the chat platform."""

    async def create_private_space(self, order: Order, coder_id: str) -> int:
        """Create a channel visible to the coder and the owning admin; return its id."""

        raise NotImplementedError

    async def post_welcome(self, channel_id: int, order: Order, coder_id: str) -> None:
        raise NotImplementedError

    async def archive_space(self, channel_id: int, coder_id: Optional[str], label: str) -> None:
        """Move the space under the ``label`` grouping and revoke the coder's access."""

        raise NotImplementedError

    async def post_notice(self, channel_id: int, text: str) -> None:
        raise NotImplementedError

    async def mention_verifiers(self, channel_id: int, order: Order, coder_id: str) -> None:
        raise NotImplementedError

    async def retract_announcement(self, order: Order) -> bool:
        """Delete the public announcement; return whether one was found."""

        raise NotImplementedError

    async def post_history(self, order: Order) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class LifecycleResult:
    order: Order
    message: str
    warnings: tuple = ()


class OrderLifecycle:
    """Enforces the order state machine and the one-active-order rule."""

    def __init__(
        self,
        store: OrderStore,
        settings: Settings,
        *,
        telemetry: Optional[TelemetryCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._telemetry = telemetry or get_telemetry()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _order(self, order_id: str) -> Order:
        order = self._store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order `{order_id}` does not exist.")
        return order

    def _record(self, order: Order, actor_id: str) -> None:
        self._telemetry.track_order_transition(
            order.order_id, order.status.value, actor_id=actor_id, level=order.level
        )

    # OPEN -> ASSIGNED --------------------------------------------------
    async def accept(
        self,
        order_id: str,
        coder_id: str,
        workspace: Workspace,
        *,
        now: Optional[datetime] = None,
    ) -> LifecycleResult:
        now = now or self._clock()
        order = self._order(order_id)
        if order.status is not OrderStatus.OPEN:
            raise InvalidTransitionError(f"Order `{order_id}` is no longer available.")
        coder = self._store.get_coder(coder_id)
        if coder is not None and coder.active_order_id:
            raise StateError(
                f"You are already working on order `{coder.active_order_id}`. Finish it before taking another."
            )

        assigned = self._store.assign_order(order_id, coder_id, now)
        if assigned is None:
            # Lost a race: either the order moved on or the coder picked up another job.
            current = self._order(order_id)
            if current.status is not OrderStatus.OPEN:
                raise InvalidTransitionError(f"Order `{order_id}` was just taken by someone else.")
            raise StateError("You are already working on another order.")
        self._record(assigned, coder_id)
        logger.info("Coder %s accepted order %s", coder_id, order_id)

        try:
            channel_id = await workspace.create_private_space(assigned, coder_id)
            self._store.set_private_channel(order_id, channel_id)
            assigned.private_channel_id = channel_id
            await workspace.post_welcome(channel_id, assigned, coder_id)
        except Exception as exc:
            logger.exception("Failed to set up private space for order %s", order_id)
            raise DependencyError(
                f"You were assigned order `{order_id}`, but its private channel could not be set up. "
                "Please contact an administrator."
            ) from exc
        return LifecycleResult(assigned, f"You accepted order `{order_id}`. Head to <#{channel_id}>.")

    # ASSIGNED -> COMPLETED ---------------------------------------------
    async def complete(
        self,
        order_id: str,
        actor_id: str,
        workspace: Workspace,
        *,
        is_admin: bool = False,
        now: Optional[datetime] = None,
    ) -> LifecycleResult:
        order = self._order(order_id)
        if actor_id not in (order.assigned_to, order.admin_id) and not is_admin:
            raise PermissionDeniedError("Only the assigned coder or an administrator can complete this order.")
        return await self._finish(order, actor_id, workspace, now=now)

    async def admin_complete(
        self,
        order_id: str,
        actor_id: str,
        workspace: Workspace,
        *,
        is_admin: bool,
        now: Optional[datetime] = None,
    ) -> LifecycleResult:
        if not is_admin:
            raise PermissionDeniedError("This action requires an administrator role.")
        order = self._order(order_id)
        return await self._finish(order, actor_id, workspace, now=now)

    async def _finish(
        self,
        order: Order,
        actor_id: str,
        workspace: Workspace,
        *,
        now: Optional[datetime],
    ) -> LifecycleResult:
        now = now or self._clock()
        if order.status is not OrderStatus.ASSIGNED:
            raise InvalidTransitionError(
                f"Order `{order.order_id}` is {order.status.value} and cannot be completed."
            )
        completed = self._store.complete_order(
            order.order_id,
            increment_coder=actor_id == order.assigned_to,
            now=now,
        )
        if completed is None:
            raise InvalidTransitionError(f"Order `{order.order_id}` changed state; please try again.")
        self._record(completed, actor_id)
        logger.info("Order %s completed by %s", order.order_id, actor_id)

        warnings = await self._wind_down(completed, workspace, now, notice=None)
        try:
            await workspace.post_history(completed)
        except Exception:
            logger.exception("Failed to post history entry for order %s", order.order_id)
            warnings.append("history entry could not be posted")
        return LifecycleResult(completed, f"Order `{order.order_id}` marked as completed.", tuple(warnings))

    # OPEN/ASSIGNED -> CANCELLED ----------------------------------------
    async def cancel(
        self,
        order_id: str,
        actor_id: str,
        workspace: Workspace,
        *,
        is_admin: bool = False,
        now: Optional[datetime] = None,
    ) -> LifecycleResult:
        now = now or self._clock()
        order = self._order(order_id)
        if actor_id != order.admin_id and not is_admin:
            raise PermissionDeniedError("Only the order's creator or an administrator can cancel it.")
        if order.status.terminal:
            raise InvalidTransitionError(f"Order `{order_id}` is already {order.status.value}.")
        cancelled = self._store.cancel_order(order_id, now)
        if cancelled is None:
            raise InvalidTransitionError(f"Order `{order_id}` changed state; please try again.")
        self._record(cancelled, actor_id)
        logger.info("Order %s cancelled by %s", order_id, actor_id)

        warnings: List[str] = []
        try:
            if not await workspace.retract_announcement(cancelled):
                warnings.append("the announcement was not found")
        except Exception:
            logger.exception("Failed to retract announcement for order %s", order_id)
            warnings.append("the announcement could not be removed")
        warnings.extend(
            await self._wind_down(
                cancelled,
                workspace,
                now,
                notice=f"❌ Order `{order_id}` has been cancelled by <@{actor_id}>.",
            )
        )
        return LifecycleResult(cancelled, f"Order `{order_id}` has been cancelled.", tuple(warnings))

    async def _wind_down(
        self,
        order: Order,
        workspace: Workspace,
        now: datetime,
        *,
        notice: Optional[str],
    ) -> List[str]:
        """Post an optional notice and archive the private space; failures become warnings."""

        warnings: List[str] = []
        if order.private_channel_id is None:
            return warnings
        try:
            if notice:
                await workspace.post_notice(order.private_channel_id, notice)
            await workspace.archive_space(order.private_channel_id, order.assigned_to, month_label(now))
        except Exception:
            logger.exception("Failed to archive private space for order %s", order.order_id)
            warnings.append("the private channel could not be archived")
        return warnings

    async def archive_rated(self, order: Order, workspace: Workspace, *, now: Optional[datetime] = None) -> List[str]:
        """Archive the private space of an order completed by its rating."""

        return await self._wind_down(order, workspace, now or self._clock(), notice=None)

    # Verification ------------------------------------------------------
    async def request_verification(
        self,
        order_id: str,
        actor_id: str,
        workspace: Workspace,
        *,
        now: Optional[datetime] = None,
    ) -> LifecycleResult:
        now = now or self._clock()
        order = self._order(order_id)
        if order.status is not OrderStatus.ASSIGNED:
            raise InvalidTransitionError(f"Order `{order_id}` is not in progress.")
        if order.assigned_to != actor_id:
            raise PermissionDeniedError("Only the assigned coder can request verification.")
        cooldown = timedelta(hours=self._settings.verification_cooldown_hours)
        if order.last_verification_request is not None:
            elapsed = now - order.last_verification_request
            if elapsed < cooldown:
                remaining = (cooldown - elapsed).total_seconds() / 3600
                raise CooldownError(max(1, math.ceil(remaining)))
        if order.private_channel_id is None:
            raise NotFoundError(f"Order `{order_id}` has no private channel.")
        try:
            await workspace.mention_verifiers(order.private_channel_id, order, actor_id)
        except Exception as exc:
            logger.exception("Failed to request verification for order %s", order_id)
            raise DependencyError("The verification request could not be sent.") from exc
        updated = self._store.set_verification_request(order_id, now) or order
        logger.info("Verification requested for order %s by %s", order_id, actor_id)
        return LifecycleResult(updated, "Verification request sent to the administrators.")

    def reset_cooldown(self, order_id: str, *, is_admin: bool) -> Order:
        if not is_admin:
            raise PermissionDeniedError("This command requires an administrator role.")
        order = self._order(order_id)
        if order.last_verification_request is None:
            raise StateError(f"Order `{order_id}` has no active verification cooldown.")
        updated = self._store.set_verification_request(order_id, None)
        logger.info("Verification cooldown reset for order %s", order_id)
        return updated or order

    # Deadlines ---------------------------------------------------------
    def due_deadline_reminders(self, now: Optional[datetime] = None) -> List[Order]:
        """Assigned orders with a private space whose deadline is inside the window."""

        due = self._store.approaching_deadlines(
            now or self._clock(),
            window_hours=self._settings.deadline_window_hours,
            reminder_gap_hours=self._settings.deadline_reminder_gap_hours,
        )
        return [order for order in due if order.private_channel_id is not None]

    def mark_reminded(self, order_id: str, now: Optional[datetime] = None) -> None:
        self._store.mark_deadline_reminder(order_id, now or self._clock())


__all__ = ["OrderLifecycle", "Workspace", "LifecycleResult"]
