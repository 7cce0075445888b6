"""Tests for the order creation wizard."""
from __future__ import annotations

import asyncio
import sqlite3
from datetime import date, datetime, timezone

import pytest

from order_board.errors import (
    ChannelUnavailableError,
    PublishError,
    SessionExistsError,
    SessionLostError,
    StaleInteractionError,
    ValidationError,
)
from order_board.models import OrderStatus, PreviewAction, RoleRef, WizardStep
from order_board.services.sessions import InMemorySessionStore
from order_board.services.wizard import AnnouncementPublisher, OrderWizard, parse_list

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

DIRECTORY = [
    RoleRef("11", "Python", position=4),
    RoleRef("12", "React", position=3),
    RoleRef("13", "Figma", position=2),
]


class DummyPublisher(AnnouncementPublisher):
    def __init__(self, unreachable=(), broken=False):
        self.unreachable = set(unreachable)
        self.broken = broken
        self.calls = []

    async def publish(self, order, channel_id):
        self.calls.append((order.order_id, channel_id))
        if channel_id in self.unreachable:
            raise ChannelUnavailableError(channel_id)
        if self.broken:
            raise RuntimeError("gateway hiccup")
        return 5555


@pytest.fixture
def wizard(store, settings):
    return OrderWizard(store, InMemorySessionStore(), settings, clock=lambda: NOW)


async def _reach_preview(wizard, user_id="admin", *, level=3, elevated=False, on_expire=None):
    wizard.start(user_id, 100)
    wizard.submit_initial(user_id, client_name="Acme", compensation="50$", description="Build a widget")
    wizard.skip_date(user_id)
    wizard.skip_roles(user_id)
    wizard.select_level(user_id, level, elevated=elevated)
    return await wizard.submit_confirmation(
        user_id,
        client_name="Acme",
        compensation="50$",
        description="Build a widget",
        tags_text="",
        roles_text="",
        elevated=elevated,
        resolve_role=lambda name: None,
        on_expire=on_expire,
    )


@pytest.mark.asyncio
async def test_full_wizard_publishes_to_level_channel(wizard, store):
    wizard.start("admin", 100)
    wizard.submit_initial("admin", client_name=" Acme ", compensation="50$", description="Build a widget")

    wizard.select_year("admin", 2026)
    wizard.select_month("admin", 4)
    assert [len(chunk) for chunk in wizard.day_choices("admin")] == [25, 5]
    assert wizard.select_day("admin", 15) == date(2026, 4, 15)
    wizard.continue_after_date("admin")

    front_end = wizard.select_category("admin", "front_end", DIRECTORY)
    assert [role.name for role in front_end] == ["React"]
    wizard.select_roles("admin", ["12"], DIRECTORY)
    assert wizard.select_roles("admin", ["12", "none"], DIRECTORY) == []
    wizard.continue_to_level("admin")

    choice = wizard.select_level("admin", 3, elevated=False)
    assert choice.level == 3 and not choice.clamped
    defaults = wizard.confirmation_defaults("admin")
    assert defaults["client_name"] == "Acme"
    assert defaults["required_roles"] == "React"

    preview = await wizard.submit_confirmation(
        "admin",
        client_name="Acme",
        compensation="50$",
        description="Build a widget",
        tags_text="urgent, web, Urgent",
        roles_text="React, @Figma",
        elevated=False,
        resolve_role=lambda name: {"react": "12", "figma": "13"}.get(name.lower()),
        on_expire=None,
    )
    assert preview.channel_id == 303
    assert wizard.session("admin").step is WizardStep.PREVIEW

    publisher = DummyPublisher()
    result = await wizard.resolve("admin", PreviewAction.PUBLISH, publisher)

    assert result.channel_id == 303
    assert result.message_id == 5555
    assert wizard.session("admin") is None
    stored = store.get_order(result.order.order_id)
    assert stored.status is OrderStatus.OPEN
    assert stored.deadline == date(2026, 4, 15)
    assert stored.tags == ["urgent", "web"]
    assert [role.role_id for role in stored.required_roles] == ["12", "13"]
    assert stored.message_id == 5555
    assert stored.channel_id == 303


def test_second_start_keeps_first_session(wizard):
    wizard.start("admin", 100)
    wizard.submit_initial("admin", client_name="Acme", compensation="1", description="x")

    with pytest.raises(SessionExistsError):
        wizard.start("admin", 200)

    session = wizard.session("admin")
    assert session.channel_id == 100
    assert session.step is WizardStep.DATE_SELECTION


def test_stale_and_lost_interactions(wizard):
    with pytest.raises(SessionLostError):
        wizard.skip_date("ghost")

    wizard.start("admin", 100)
    wizard.submit_initial("admin", client_name="Acme", compensation="1", description="x")
    wizard.skip_date("admin")

    with pytest.raises(StaleInteractionError):
        wizard.skip_date("admin")
    assert wizard.session("admin").step is WizardStep.ROLE_CATEGORY


def test_blank_initial_fields_are_rejected(wizard):
    wizard.start("admin", 100)
    with pytest.raises(ValidationError):
        wizard.submit_initial("admin", client_name="  ", compensation="1", description="x")
    assert wizard.session("admin").step is WizardStep.INITIAL_FORM


def test_text_path_collects_fields_in_bound_channel(wizard):
    wizard.start("admin", 100)

    assert wizard.handle_text("admin", 200, "Acme") is None
    assert wizard.handle_text("other", 100, "Acme") is None

    reply = wizard.handle_text("admin", 100, "Acme")
    assert reply.step is WizardStep.INITIAL_FORM
    wizard.handle_text("admin", 100, "50$")
    reply = wizard.handle_text("admin", 100, "Build a widget")
    assert reply.step is WizardStep.DATE_SELECTION
    assert wizard.session("admin").data.description == "Build a widget"


def test_day_requires_year_and_month(wizard):
    wizard.start("admin", 100)
    wizard.submit_initial("admin", client_name="Acme", compensation="1", description="x")

    with pytest.raises(ValidationError):
        wizard.select_day("admin", 3)
    with pytest.raises(ValidationError):
        wizard.continue_after_date("admin")

    wizard.select_year("admin", 2026)
    wizard.select_month("admin", 2)
    with pytest.raises(ValidationError):
        wizard.select_day("admin", 30)
    with pytest.raises(ValidationError):
        wizard.select_year("admin", 2040)


def test_level_six_is_clamped_for_regular_admins(wizard):
    assert wizard.level_options(False) == [1, 2, 3, 4, 5]
    assert wizard.level_options(True)[-1] == 6

    wizard.start("admin", 100)
    wizard.submit_initial("admin", client_name="Acme", compensation="1", description="x")
    wizard.skip_date("admin")
    wizard.skip_roles("admin")

    choice = wizard.select_level("admin", 6, elevated=False)
    assert choice.level == 5
    assert choice.clamped

    # The level can be re-picked while the confirmation form is open.
    assert wizard.select_level("admin", 6, elevated=True).level == 6
    assert not wizard.session("admin").data.level_clamped


def test_role_picks_accumulate_across_categories(wizard):
    wizard.start("admin", 100)
    wizard.submit_initial("admin", client_name="Acme", compensation="50$", description="Build a widget")
    wizard.skip_date("admin")

    wizard.select_category("admin", "front_end", DIRECTORY)
    wizard.select_roles("admin", ["12"], DIRECTORY)
    assert [role.name for role in wizard.back_to_categories("admin")] == ["React"]

    ui_roles = wizard.select_category("admin", "ui", DIRECTORY)
    assert [role.name for role in ui_roles] == ["Figma"]
    added = wizard.select_roles("admin", ["13", "12"], DIRECTORY)

    assert [role.name for role in added] == ["Figma"]
    selected = wizard.back_to_categories("admin")
    assert [(role.name, role.role_id) for role in selected] == [("React", "12"), ("Figma", "13")]
    wizard.continue_to_level("admin")
    assert wizard.session("admin").step is WizardStep.LEVEL_SELECTION


@pytest.mark.asyncio
async def test_preview_reports_clamped_level(wizard):
    preview = await _reach_preview(wizard, level=6, elevated=False)

    assert preview.draft.level == 5
    assert preview.level_clamped
    assert preview.expires_in == 300

    unclamped = await _reach_preview(wizard, "owner", level=6, elevated=True)
    assert unclamped.draft.level == 6
    assert not unclamped.level_clamped
    wizard.cancel("admin")
    wizard.cancel("owner")


@pytest.mark.asyncio
async def test_cancel_at_preview_persists_nothing(wizard, store):
    await _reach_preview(wizard)

    assert await wizard.resolve("admin", PreviewAction.CANCEL) is None
    assert wizard.session("admin") is None
    assert store.order_history(10) == []
    assert store.order_stats()["total"] == 0


@pytest.mark.asyncio
async def test_second_publish_click_finds_no_session(wizard):
    await _reach_preview(wizard)
    publisher = DummyPublisher()

    await wizard.resolve("admin", PreviewAction.PUBLISH, publisher)
    with pytest.raises(SessionLostError):
        await wizard.resolve("admin", PreviewAction.PUBLISH, publisher)
    assert len(publisher.calls) == 1


@pytest.mark.asyncio
async def test_preview_expires_after_timeout(wizard, store):
    wizard.confirmation_timeout = 0.01
    expired = asyncio.Event()

    async def on_expire():
        expired.set()

    await _reach_preview(wizard, on_expire=on_expire)
    await asyncio.wait_for(expired.wait(), timeout=1)

    assert wizard.session("admin") is None
    assert store.order_stats()["total"] == 0
    with pytest.raises(SessionLostError):
        await wizard.resolve("admin", PreviewAction.PUBLISH, DummyPublisher())


@pytest.mark.asyncio
async def test_publish_falls_back_to_default_channel(wizard):
    await _reach_preview(wizard, level=3)
    publisher = DummyPublisher(unreachable={303})

    result = await wizard.resolve("admin", PreviewAction.PUBLISH, publisher)

    assert result.channel_id == 999
    assert [channel for _, channel in publisher.calls] == [303, 999]


@pytest.mark.asyncio
async def test_level_without_channel_uses_default(wizard):
    preview = await _reach_preview(wizard, level=2)
    assert preview.channel_id == 999


@pytest.mark.asyncio
async def test_no_reachable_channel_reports_channel_not_found(wizard, store):
    await _reach_preview(wizard, level=3)

    with pytest.raises(PublishError) as info:
        await wizard.resolve("admin", PreviewAction.PUBLISH, DummyPublisher(unreachable={303, 999}))

    assert info.value.kind == "channel_not_found"
    assert info.value.order_persisted
    assert wizard.session("admin") is None
    assert store.order_stats()["open"] == 1


@pytest.mark.asyncio
async def test_send_failure_reports_publish_error(wizard):
    await _reach_preview(wizard)

    with pytest.raises(PublishError) as info:
        await wizard.resolve("admin", PreviewAction.PUBLISH, DummyPublisher(broken=True))

    assert info.value.kind == "publish"


@pytest.mark.asyncio
async def test_database_failure_publishes_nothing(wizard, store, monkeypatch):
    await _reach_preview(wizard)

    def explode(order):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "create_order", explode)
    publisher = DummyPublisher()

    with pytest.raises(PublishError) as info:
        await wizard.resolve("admin", PreviewAction.PUBLISH, publisher)

    assert info.value.kind == "database"
    assert not info.value.order_persisted
    assert publisher.calls == []


def test_cancel_and_abort_clear_session(wizard):
    wizard.start("admin", 100)
    assert wizard.cancel("admin") is True
    assert wizard.cancel("admin") is False

    wizard.start("admin", 100)
    assert wizard.abort("admin") is True
    wizard.start("admin", 100)


def test_parse_list_dedupes_case_insensitively():
    assert parse_list(" a, b ,, A,c ") == ["a", "b", "c"]
    assert parse_list(None) == []
