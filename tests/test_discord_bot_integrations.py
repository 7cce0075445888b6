"""Smoke tests for Discord channel routing, identity checks and embeds."""
from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from order_board.adapters.discord.bot import ChannelRouter
from order_board.adapters.discord.builders import (
    build_history_embed,
    build_order_embed,
    deadline_reminder,
    embed_mentions_order,

    expiry_text,)
from order_board.adapters.discord.handlers import (
    GENERIC_FAILURE,
    InteractionRouter,
    is_admin,
    is_elevated,
    role_directory,
    role_resolver,
)
from order_board.discord_bot import build_bot
from order_board.interactions import AcceptOrder, PickYear, encode
from order_board.models import Order, OrderStatus, RequiredRole, WizardStep
from order_board.services.lifecycle import OrderLifecycle
from order_board.services.ratings import RatingService
from order_board.services.sessions import InMemorySessionStore
from order_board.services.wizard import OrderWizard

ENV_VARS = [
    "ORDER_BOARD_CHANNEL_CREATE",
    "ORDER_BOARD_CHANNEL_DEFAULT",
    "ORDER_BOARD_CHANNEL_HISTORY",
    "ORDER_BOARD_CHANNEL_LEVEL_UP",
    "ORDER_BOARD_CATEGORY_PROJECTS",
] + [f"ORDER_BOARD_CHANNEL_LEVEL_{level}" for level in range(1, 7)]


@pytest.fixture(autouse=True)
def reset_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield


def _order(**overrides) -> Order:
    values = dict(
        order_id="1700000000-abc123",
        admin_id="10",
        client_name="Acme",
        compensation="50$",
        description="Build a widget",
        level=3,
        deadline=date(2026, 4, 15),
        required_roles=[RequiredRole("React", "12"), RequiredRole("Figma")],
        tags=["urgent"],
    )
    values.update(overrides)
    return Order(**values)


def _member(*, administrator=False, roles=()):
    return SimpleNamespace(
        guild_permissions=SimpleNamespace(administrator=administrator),
        roles=[SimpleNamespace(id=role_id, name=name) for role_id, name in roles],
    )


def test_channel_router_uses_settings(settings):
    router = ChannelRouter.from_env(settings)

    assert router.create == 100
    assert router.history == 500
    assert router.levels == {1: 301, 3: 303}
    assert router.announcement_channels(3) == [303, 999]
    assert router.announcement_channels(2) == [999]


def test_channel_router_env_overrides(settings, monkeypatch):
    monkeypatch.setenv("ORDER_BOARD_CHANNEL_DEFAULT", "12345")
    monkeypatch.setenv("ORDER_BOARD_CHANNEL_LEVEL_2", "222")
    monkeypatch.setenv("ORDER_BOARD_CHANNEL_HISTORY", "not-a-number")

    router = ChannelRouter.from_env(settings)

    assert router.default == 12345
    assert router.levels[2] == 222
    assert router.history == 500


def test_admin_checks(settings):
    assert is_admin(_member(administrator=True), settings)
    assert is_admin(_member(roles=[(1, "admin")]), settings)
    assert not is_admin(_member(roles=[(1, "Coder")]), settings)

    assert is_elevated(_member(roles=[(42, "Owner")]), settings)
    assert not is_elevated(_member(administrator=True), settings)


def test_elevated_falls_back_to_administrator_permission(settings):
    unconfigured = replace(settings, super_admin_role_id=None)

    assert is_elevated(_member(administrator=True), unconfigured)
    assert not is_elevated(_member(roles=[(42, "Owner")]), unconfigured)


def test_role_directory_and_resolver():
    guild = SimpleNamespace(
        roles=[
            SimpleNamespace(id=12, name="React", position=3, managed=False),
            SimpleNamespace(id=13, name="Bot", position=1, managed=True),
        ]
    )

    directory = role_directory(guild)
    assert [(role.role_id, role.managed) for role in directory] == [("12", False), ("13", True)]
    assert role_directory(None) == []

    resolve = role_resolver(guild)
    assert resolve("@react") == "12"
    assert resolve("Vue") is None


def test_order_embed_carries_order_id():
    order = _order()
    embed = build_order_embed(order)

    names = [field.name for field in embed.fields]
    assert names[:4] == ["Client", "Compensation", "Level", "Deadline"]
    roles = next(field.value for field in embed.fields if field.name == "Required skills")
    assert roles == "<@&12>, Figma"
    assert embed_mentions_order(embed, order.order_id)
    assert not embed_mentions_order(build_order_embed(_order(order_id="other")), order.order_id)


def test_history_embed_reports_duration():
    start = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    order = _order(
        status=OrderStatus.COMPLETED,
        assigned_to="77",
        assigned_at=start,
        completed_at=start + timedelta(hours=5),
    )

    embed = build_history_embed(order)

    fields = {field.name: field.value for field in embed.fields}
    assert fields["Coder"] == "<@77>"
    assert fields["Project duration"] == "5 hour(s), 0 minute(s)"


def test_deadline_reminder_mentions_coder():
    text = deadline_reminder(_order(assigned_to="77"))
    assert text.startswith("⏰ <@77> order `1700000000-abc123`")


def test_expiry_text_follows_configured_timeout():
    assert expiry_text(300) == "5 minutes"
    assert expiry_text(60) == "1 minute"
    assert expiry_text(45) == "45 seconds"


# Interaction routing -------------------------------------------------
@pytest.fixture
def interaction_router(store, settings):
    wizard = OrderWizard(store, InMemorySessionStore(), settings)
    return InteractionRouter(
        MagicMock(),
        ChannelRouter.from_env(settings),
        settings,
        wizard=wizard,
        lifecycle=OrderLifecycle(store, settings),
        ratings=RatingService(store),
    )


def _interaction(custom_id=None, *, values=(), user_id=7, channel_id=100):
    response = MagicMock()
    response.is_done = MagicMock(return_value=False)
    response.send_message = AsyncMock()
    response.send_modal = AsyncMock()
    response.defer = AsyncMock()
    response.edit_message = AsyncMock()
    return SimpleNamespace(
        user=SimpleNamespace(
            id=user_id,
            guild_permissions=SimpleNamespace(administrator=True),
            roles=[],
        ),
        channel_id=channel_id,
        guild=None,
        message=None,
        data={"custom_id": custom_id, "values": list(values)} if custom_id else {},
        response=response,
        followup=SimpleNamespace(send=AsyncMock()),
    )


def _message(content, *, author_id=7, channel_id=100, bot=False):
    return SimpleNamespace(
        author=SimpleNamespace(id=author_id, bot=bot),
        guild=SimpleNamespace(id=1),
        channel=SimpleNamespace(id=channel_id, send=AsyncMock()),
        content=content,
        reply=AsyncMock(),
    )


def _at_date_step(router, user_id="7"):
    router.wizard.start(user_id, 100)
    router.wizard.submit_initial(user_id, client_name="Acme", compensation="50$", description="Build a widget")


@pytest.mark.asyncio
async def test_start_wizard_opens_modal(interaction_router):
    interaction = _interaction()

    await interaction_router.start_wizard(interaction)

    interaction.response.send_modal.assert_awaited_once()
    assert interaction_router.wizard.session("7").step is WizardStep.INITIAL_FORM


@pytest.mark.asyncio
async def test_failed_modal_send_releases_session(interaction_router):
    interaction = _interaction()
    interaction.response.send_modal.side_effect = RuntimeError("interaction expired")

    await interaction_router.start_wizard(interaction)

    assert interaction_router.wizard.session("7") is None
    interaction.response.send_message.assert_awaited_once_with(GENERIC_FAILURE, ephemeral=True)


@pytest.mark.asyncio
async def test_second_add_keeps_existing_session(interaction_router):
    _at_date_step(interaction_router)
    interaction = _interaction()

    await interaction_router.start_wizard(interaction)

    interaction.response.send_modal.assert_not_awaited()
    assert interaction_router.wizard.session("7").step is WizardStep.DATE_SELECTION
    message = interaction.response.send_message.await_args.args[0]
    assert "already" in message


@pytest.mark.asyncio
async def test_foreign_component_is_ignored(interaction_router):
    interaction = _interaction("other-bot:button")

    assert await interaction_router.dispatch(interaction) is False
    interaction.response.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_unexpected_wizard_failure_aborts_session(interaction_router, monkeypatch):
    _at_date_step(interaction_router)
    monkeypatch.setattr(interaction_router.wizard, "select_year", MagicMock(side_effect=RuntimeError("boom")))
    interaction = _interaction(encode(PickYear()), values=["2026"])

    assert await interaction_router.dispatch(interaction) is True

    assert interaction_router.wizard.session("7") is None
    interaction.response.send_message.assert_awaited_once_with(GENERIC_FAILURE, ephemeral=True)


@pytest.mark.asyncio
async def test_stale_wizard_click_keeps_session(interaction_router):
    interaction_router.wizard.start("7", 100)
    interaction = _interaction(encode(PickYear()), values=["2026"])

    await interaction_router.dispatch(interaction)

    assert interaction_router.wizard.session("7").step is WizardStep.INITIAL_FORM
    interaction.response.send_message.assert_awaited_once()
    assert interaction.response.send_message.await_args.args[0] != GENERIC_FAILURE


@pytest.mark.asyncio
async def test_lifecycle_failure_leaves_wizard_alone(interaction_router):
    _at_date_step(interaction_router)
    interaction_router.lifecycle.accept = AsyncMock(side_effect=RuntimeError("gateway"))
    interaction = _interaction(encode(AcceptOrder("1700000000-abc123")))

    await interaction_router.dispatch(interaction)

    assert interaction_router.wizard.session("7").step is WizardStep.DATE_SELECTION
    interaction.response.send_message.assert_awaited_once_with(GENERIC_FAILURE, ephemeral=True)


@pytest.mark.asyncio
async def test_bound_channel_message_feeds_wizard(interaction_router):
    interaction_router.wizard.start("7", 100)

    assert await interaction_router.handle_message(_message("Acme")) is True
    assert interaction_router.wizard.session("7").data.client_name == "Acme"

    assert await interaction_router.handle_message(_message("Acme", channel_id=101)) is False
    assert await interaction_router.handle_message(_message("Acme", bot=True)) is False
    assert await interaction_router.handle_message(_message("Acme", author_id=8)) is False


@pytest.mark.asyncio
async def test_on_message_intercepts_wizard_input(tmp_path, settings, monkeypatch):
    bot = build_bot(tmp_path / "bot.db", settings=settings)
    process_commands = AsyncMock()
    monkeypatch.setattr(bot, "process_commands", process_commands)
    bot.interaction_router.wizard.start("7", 100)

    await bot.on_message(_message("Acme"))
    process_commands.assert_not_awaited()

    await bot.on_message(_message("/history", author_id=8))
    process_commands.assert_awaited_once()
