"""Tests for the order lifecycle state machine."""
from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from order_board.errors import (
    CooldownError,
    DependencyError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
)
from order_board.models import Order, OrderStatus
from order_board.services.lifecycle import OrderLifecycle, Workspace

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class DummyWorkspace(Workspace):
    def __init__(self, channel_id: int = 8000):
        self.create_private_space = AsyncMock(return_value=channel_id)
        self.post_welcome = AsyncMock()
        self.archive_space = AsyncMock()
        self.post_notice = AsyncMock()
        self.mention_verifiers = AsyncMock()
        self.retract_announcement = AsyncMock(return_value=True)
        self.post_history = AsyncMock()


@pytest.fixture
def lifecycle(store, settings):
    return OrderLifecycle(store, settings, clock=lambda: NOW)


@pytest.fixture
def workspace():
    return DummyWorkspace()


def _open_order(store, order_id="o-1", **overrides):
    values = dict(
        order_id=order_id,
        admin_id="admin",
        client_name="Acme",
        compensation="50$",
        description="Build a widget",
        level=2,
    )
    values.update(overrides)
    return store.create_order(Order(**values))


@pytest.mark.asyncio
async def test_accept_assigns_and_opens_private_space(lifecycle, store, workspace):
    _open_order(store)

    result = await lifecycle.accept("o-1", "coder", workspace)

    assert result.order.status is OrderStatus.ASSIGNED
    assert result.order.private_channel_id == 8000
    assert "<#8000>" in result.message
    stored = store.get_order("o-1")
    assert stored.assigned_to == "coder"
    assert stored.private_channel_id == 8000
    assert store.get_coder("coder").active_order_id == "o-1"
    workspace.post_welcome.assert_awaited_once()


@pytest.mark.asyncio
async def test_second_accept_is_rejected(lifecycle, store, workspace):
    _open_order(store)
    await lifecycle.accept("o-1", "coder", workspace)

    with pytest.raises(InvalidTransitionError):
        await lifecycle.accept("o-1", "other", workspace)
    assert store.get_order("o-1").assigned_to == "coder"


@pytest.mark.asyncio
async def test_concurrent_accepts_assign_exactly_one_coder(lifecycle, store, workspace):
    _open_order(store)

    results = await asyncio.gather(
        lifecycle.accept("o-1", "alice", workspace),
        lifecycle.accept("o-1", "bob", workspace),
        return_exceptions=True,
    )

    winners = [item for item in results if not isinstance(item, Exception)]
    losers = [item for item in results if isinstance(item, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], InvalidTransitionError)
    assert workspace.create_private_space.await_count == 1
    assert store.get_order("o-1").assigned_to == winners[0].order.assigned_to


@pytest.mark.asyncio
async def test_busy_coder_cannot_accept_another_order(lifecycle, store, workspace):
    _open_order(store, "o-1")
    _open_order(store, "o-2")
    await lifecycle.accept("o-1", "coder", workspace)

    with pytest.raises(StateError) as info:
        await lifecycle.accept("o-2", "coder", workspace)

    assert not isinstance(info.value, InvalidTransitionError)
    assert store.get_order("o-2").status is OrderStatus.OPEN


@pytest.mark.asyncio
async def test_private_space_failure_keeps_assignment(lifecycle, store):
    _open_order(store)
    broken = DummyWorkspace()
    broken.create_private_space.side_effect = RuntimeError("missing permissions")

    with pytest.raises(DependencyError):
        await lifecycle.accept("o-1", "coder", broken)

    assert store.get_order("o-1").status is OrderStatus.ASSIGNED


@pytest.mark.asyncio
async def test_accept_unknown_order(lifecycle, workspace):
    with pytest.raises(NotFoundError):
        await lifecycle.accept("missing", "coder", workspace)


@pytest.mark.asyncio
async def test_coder_completion_counts_and_archives(lifecycle, store, workspace):
    _open_order(store)
    await lifecycle.accept("o-1", "coder", workspace)

    result = await lifecycle.complete("o-1", "coder", workspace)

    assert result.order.status is OrderStatus.COMPLETED
    assert result.warnings == ()
    coder = store.get_coder("coder")
    assert coder.completed_orders == 1
    assert coder.active_order_id is None
    workspace.archive_space.assert_awaited_once_with(8000, "coder", "2026 - March")
    workspace.post_history.assert_awaited_once()


@pytest.mark.asyncio
async def test_completion_permissions_and_states(lifecycle, store, workspace):
    _open_order(store)

    with pytest.raises(InvalidTransitionError):
        await lifecycle.complete("o-1", "admin", workspace)

    await lifecycle.accept("o-1", "coder", workspace)
    with pytest.raises(PermissionDeniedError):
        await lifecycle.complete("o-1", "stranger", workspace)
    with pytest.raises(PermissionDeniedError):
        await lifecycle.admin_complete("o-1", "stranger", workspace, is_admin=False)

    result = await lifecycle.admin_complete("o-1", "mod", workspace, is_admin=True)
    assert result.order.status is OrderStatus.COMPLETED
    assert store.get_coder("coder").completed_orders == 0

    with pytest.raises(InvalidTransitionError):
        await lifecycle.complete("o-1", "coder", workspace)


@pytest.mark.asyncio
async def test_archive_failure_becomes_warning(lifecycle, store, workspace):
    _open_order(store)
    await lifecycle.accept("o-1", "coder", workspace)
    workspace.archive_space.side_effect = RuntimeError("boom")

    result = await lifecycle.complete("o-1", "coder", workspace)

    assert result.order.status is OrderStatus.COMPLETED
    assert result.warnings == ("the private channel could not be archived",)


@pytest.mark.asyncio
async def test_cancel_open_order_retracts_announcement(lifecycle, store, workspace):
    _open_order(store)

    result = await lifecycle.cancel("o-1", "admin", workspace)

    assert result.order.status is OrderStatus.CANCELLED
    workspace.retract_announcement.assert_awaited_once()
    workspace.archive_space.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_assigned_order_frees_coder(lifecycle, store, workspace):
    _open_order(store)
    await lifecycle.accept("o-1", "coder", workspace)

    result = await lifecycle.cancel("o-1", "admin", workspace)

    assert result.order.status is OrderStatus.CANCELLED
    assert store.get_coder("coder").active_order_id is None
    workspace.post_notice.assert_awaited_once()
    workspace.archive_space.assert_awaited_once_with(8000, "coder", "2026 - March")


@pytest.mark.asyncio
async def test_cancel_rules(lifecycle, store, workspace):
    _open_order(store)

    with pytest.raises(PermissionDeniedError):
        await lifecycle.cancel("o-1", "stranger", workspace)

    workspace.retract_announcement.return_value = False
    result = await lifecycle.cancel("o-1", "mod", workspace, is_admin=True)
    assert result.warnings == ("the announcement was not found",)

    with pytest.raises(InvalidTransitionError):
        await lifecycle.cancel("o-1", "admin", workspace)


@pytest.mark.asyncio
async def test_verification_cooldown(lifecycle, store, workspace):
    _open_order(store)
    await lifecycle.accept("o-1", "coder", workspace)

    with pytest.raises(PermissionDeniedError):
        await lifecycle.request_verification("o-1", "stranger", workspace)

    await lifecycle.request_verification("o-1", "coder", workspace, now=NOW)
    workspace.mention_verifiers.assert_awaited_once()

    with pytest.raises(CooldownError) as info:
        await lifecycle.request_verification("o-1", "coder", workspace, now=NOW + timedelta(hours=1))
    assert info.value.remaining_hours == 23

    later = NOW + timedelta(hours=24, seconds=1)
    result = await lifecycle.request_verification("o-1", "coder", workspace, now=later)
    assert result.order.last_verification_request == later
    assert workspace.mention_verifiers.await_count == 2


@pytest.mark.asyncio
async def test_reset_cooldown(lifecycle, store, workspace):
    _open_order(store)
    await lifecycle.accept("o-1", "coder", workspace)

    with pytest.raises(StateError):
        lifecycle.reset_cooldown("o-1", is_admin=True)

    await lifecycle.request_verification("o-1", "coder", workspace, now=NOW)
    with pytest.raises(PermissionDeniedError):
        lifecycle.reset_cooldown("o-1", is_admin=False)

    assert lifecycle.reset_cooldown("o-1", is_admin=True).last_verification_request is None
    await lifecycle.request_verification("o-1", "coder", workspace, now=NOW + timedelta(minutes=5))


@pytest.mark.asyncio
async def test_deadline_reminders_only_for_private_spaces(lifecycle, store, workspace):
    _open_order(store, "open", deadline=date(2026, 3, 2))
    _open_order(store, "taken", deadline=date(2026, 3, 2))
    await lifecycle.accept("taken", "coder", workspace)

    due = lifecycle.due_deadline_reminders(NOW)
    assert [order.order_id for order in due] == ["taken"]

    lifecycle.mark_reminded("taken", NOW)
    assert lifecycle.due_deadline_reminders(NOW + timedelta(hours=1)) == []
