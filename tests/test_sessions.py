"""Tests for the in-memory wizard session registry."""
from __future__ import annotations

import asyncio

import pytest

from order_board.errors import SessionExistsError, SessionLostError
from order_board.models import OrderCreationSession, WizardStep
from order_board.services.sessions import DateSelectionStore, InMemorySessionStore


def test_second_session_for_same_user_is_rejected():
    sessions = InMemorySessionStore()
    first = OrderCreationSession(user_id="u1", channel_id=1)
    first.data.client_name = "Acme"
    sessions.set("u1", first)

    with pytest.raises(SessionExistsError):
        sessions.set("u1", OrderCreationSession(user_id="u1", channel_id=2))

    kept = sessions.get("u1")
    assert kept is first
    assert kept.channel_id == 1
    assert kept.data.client_name == "Acme"
    assert len(sessions) == 1


def test_update_requires_existing_session():
    sessions = InMemorySessionStore()
    with pytest.raises(SessionLostError):
        sessions.update("ghost", OrderCreationSession(user_id="ghost", channel_id=1))


def test_delete_reports_presence():
    sessions = InMemorySessionStore()
    sessions.set("u1", OrderCreationSession(user_id="u1", channel_id=1))

    assert sessions.has("u1")
    assert sessions.delete("u1") is True
    assert sessions.delete("u1") is False
    assert not sessions.has("u1")


@pytest.mark.asyncio
async def test_delete_cancels_pending_expiry():
    sessions = InMemorySessionStore()
    session = OrderCreationSession(user_id="u1", channel_id=1, step=WizardStep.PREVIEW)
    session.expiry = asyncio.create_task(asyncio.sleep(60))
    sessions.set("u1", session)
    task = session.expiry

    sessions.delete("u1")
    await asyncio.sleep(0)

    assert task.cancelled()
    assert session.expiry is None


def test_date_selection_store_is_per_user():
    selections = DateSelectionStore()
    selections.get("a").year = 2027

    assert selections.peek("b") is None
    assert selections.peek("a").year == 2027
    selections.clear("a")
    assert selections.peek("a") is None
