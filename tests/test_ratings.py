"""Tests for applying project ratings to coder records."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from order_board.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from order_board.models import Coder, Order, OrderStatus, RatingStatus
from order_board.services.ratings import RatingService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ratings(store):
    return RatingService(store, clock=lambda: NOW)


def _assigned(store, order_id="o-1", coder_id="coder", level=1):
    store.create_order(
        Order(
            order_id=order_id,
            admin_id="admin",
            client_name="Acme",
            compensation="50$",
            description="Build a widget",
            level=level,
        )
    )
    store.assign_order(order_id, coder_id, NOW)


def test_rating_assigned_order_completes_it(ratings, store):
    _assigned(store, level=3)

    outcome = ratings.rate_project("o-1", "coder", "admin", 5, is_admin=True)

    assert outcome.order_completed
    assert outcome.order.status is OrderStatus.COMPLETED
    assert outcome.result.xp_earned == 900
    assert outcome.record.status is RatingStatus.SUCCESS
    coder = store.get_coder("coder")
    assert coder.xp == 900
    assert coder.completed_orders == 1
    assert coder.active_order_id is None
    assert store.count_ratings("coder") == 1


def test_rating_completed_order_leaves_status(ratings, store):
    _assigned(store)
    store.complete_order("o-1", increment_coder=True, now=NOW)

    outcome = ratings.rate_project("o-1", "coder", "admin", 4, is_admin=True)

    assert not outcome.order_completed
    assert outcome.coder.xp == 80
    assert store.get_coder("coder").completed_orders == 1


def test_order_can_only_be_rated_once(ratings, store):
    _assigned(store)
    ratings.rate_project("o-1", "coder", "admin", 5, is_admin=True)

    with pytest.raises(StateError):
        ratings.rate_project("o-1", "coder", "admin", 1, is_admin=True)
    assert store.get_coder("coder").xp == 100


def test_second_project_levels_coder_up(ratings, store):
    _assigned(store, "o-1")
    ratings.rate_project("o-1", "coder", "admin", 5, is_admin=True)
    _assigned(store, "o-2")

    outcome = ratings.rate_project("o-2", "coder", "admin", 1, is_admin=True)

    assert outcome.record.status is RatingStatus.LEVEL_UP
    assert outcome.record.level_before == 1
    assert outcome.record.level_after == 2
    assert store.get_coder("coder").level == 2


def test_zero_rating_bans_low_level_coder(ratings, store):
    _assigned(store)

    outcome = ratings.rate_project("o-1", "coder", "admin", 0, is_admin=True)

    assert outcome.record.status is RatingStatus.BANNED
    assert store.get_coder("coder").banned is True
    assert store.leaderboard() == []


def test_banned_coder_record_is_not_changed(ratings, store):
    _assigned(store, level=4)
    store.upsert_coder(Coder("coder", active_order_id="o-1", xp=40, level=1, banned=True))

    outcome = ratings.rate_project("o-1", "coder", "admin", 5, is_admin=True)

    assert outcome.record.status is RatingStatus.BANNED
    assert outcome.record.xp_earned == 0
    coder = store.get_coder("coder")
    assert coder.xp == 40
    assert coder.level == 1
    assert coder.active_order_id is None


def test_rating_guards(ratings, store):
    _assigned(store)

    with pytest.raises(PermissionDeniedError):
        ratings.rate_project("o-1", "coder", "someone", 5, is_admin=False)
    with pytest.raises(ValidationError):
        ratings.rate_project("o-1", "coder", "admin", 6, is_admin=True)
    with pytest.raises(NotFoundError):
        ratings.rate_project("missing", "coder", "admin", 5, is_admin=True)
    with pytest.raises(StateError):
        ratings.rate_project("o-1", "impostor", "admin", 5, is_admin=True)

    store.cancel_order("o-1", NOW)
    with pytest.raises(InvalidTransitionError):
        ratings.rate_project("o-1", "coder", "admin", 5, is_admin=True)


def test_coder_profile_and_leaderboard(ratings, store):
    with pytest.raises(NotFoundError):
        ratings.coder_profile("coder")

    _assigned(store, level=2)
    ratings.rate_project("o-1", "coder", "admin", 5, is_admin=True)

    profile = ratings.coder_profile("coder")
    assert profile.projects_rated == 1
    assert profile.coder.xp == 300
    assert profile.next_level.level == 2
    assert len(profile.recent) == 1
    assert [coder.user_id for coder in ratings.leaderboard(100)] == ["coder"]


def test_completed_orders_stop_counting_once_banned(ratings, store):
    _assigned(store, "o-1")
    ratings.rate_project("o-1", "coder", "admin", 0, is_admin=True)
    assert store.get_coder("coder").completed_orders == 1

    _assigned(store, "o-2")
    ratings.rate_project("o-2", "coder", "admin", 3, is_admin=True)

    coder = store.get_coder("coder")
    assert coder.banned
    assert coder.completed_orders == 1
