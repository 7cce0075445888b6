"""Applies admin project ratings to coder progression."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..errors import InvalidTransitionError, NotFoundError, PermissionDeniedError, StateError, ValidationError
from ..models import Coder, Order, OrderStatus, ProjectRating
from ..state import OrderStore
from ..telemetry import TelemetryCollector, get_telemetry
from ..xp import (
    LevelThreshold,
    MAX_RATING,
    RatingResult,
    evaluate_rating,
    next_threshold,
    progress_percentage,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RatingOutcome:
    order: Order
    coder: Coder
    result: RatingResult
    record: ProjectRating
    order_completed: bool


@dataclass(frozen=True)
class CoderProfile:
    coder: Coder
    projects_rated: int
    progress: int
    next_level: Optional[LevelThreshold]
    recent: List[ProjectRating]


class RatingService:
    """Runs :func:`evaluate_rating` against stored coder records."""

    def __init__(
        self,
        store: OrderStore,
        *,
        telemetry: Optional[TelemetryCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._telemetry = telemetry or get_telemetry()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def rate_project(
        self,
        order_id: str,
        coder_id: str,
        admin_id: str,
        rating: int,
        *,
        is_admin: bool,
        now: Optional[datetime] = None,
    ) -> RatingOutcome:
        if not is_admin:
            raise PermissionDeniedError("Only administrators can rate projects.")
        if not 0 <= rating <= MAX_RATING:
            raise ValidationError(f"Rating must be between 0 and {MAX_RATING}.")
        now = now or self._clock()
        order = self._store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order `{order_id}` does not exist.")
        if order.assigned_to != coder_id:
            raise StateError(f"<@{coder_id}> is not the coder assigned to order `{order_id}`.")
        if order.status not in (OrderStatus.ASSIGNED, OrderStatus.COMPLETED):
            raise InvalidTransitionError(f"Order `{order_id}` is {order.status.value} and cannot be rated.")
        if self._store.has_rating(order_id, coder_id):
            raise StateError(f"Order `{order_id}` has already been rated.")

        coder = self._store.get_coder(coder_id) or Coder(user_id=coder_id)
        result = evaluate_rating(
            current_xp=coder.xp,
            current_level=coder.level,
            completed_projects=self._store.count_ratings(coder_id),
            banned=coder.banned,
            project_level=order.level,
            rating=rating,
        )
        completes = order.status is OrderStatus.ASSIGNED
        active = None if coder.active_order_id == order_id else coder.active_order_id
        # Self-completion may already have counted this order.
        completed = max(coder.completed_orders, result.completed_projects)
        if coder.banned:
            updated = replace(coder, active_order_id=active, completed_orders=completed)
        else:
            updated = replace(
                coder,
                active_order_id=active,
                completed_orders=completed,
                xp=result.new_xp,
                level=result.new_level,
                banned=result.banned,
                last_active=now,
            )
        record = ProjectRating(
            project_id=order_id,
            coder_id=coder_id,
            admin_id=admin_id,
            rating=rating,
            xp_earned=result.xp_earned,
            level_before=result.level_before,
            level_after=result.new_level,
            status=result.status,
            rated_at=now,
        )
        self._store.record_rating(updated, record, complete_order=completes)
        self._telemetry.track_rating(coder_id, result.status.value, rating, result.xp_earned)
        if completes:
            self._telemetry.track_order_transition(
                order_id, OrderStatus.COMPLETED.value, actor_id=admin_id, level=order.level
            )
        logger.info(
            "Rated order %s for %s: %s stars, %s (+%s XP, level %s -> %s)",
            order_id,
            coder_id,
            rating,
            result.status.value,
            result.xp_earned,
            result.level_before,
            result.new_level,
        )
        return RatingOutcome(
            order=self._store.get_order(order_id) or order,
            coder=updated,
            result=result,
            record=record,
            order_completed=completes,
        )

    def coder_profile(self, user_id: str, *, recent: int = 5) -> CoderProfile:
        coder = self._store.get_coder(user_id)
        if coder is None:
            raise NotFoundError(f"<@{user_id}> has no coder profile yet.")
        return CoderProfile(
            coder=coder,
            projects_rated=self._store.count_ratings(user_id),
            progress=progress_percentage(coder.xp, coder.level),
            next_level=next_threshold(coder.level),
            recent=self._store.query_ratings(user_id, limit=recent),
        )

    def leaderboard(self, limit: int = 10) -> List[Coder]:
        return self._store.leaderboard(max(1, min(limit, 25)))


__all__ = ["RatingService", "RatingOutcome", "CoderProfile"]
