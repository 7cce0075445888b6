"""Discord bot entry point for the order board."""

import asyncio
import atexit
import logging
import os
from pathlib import Path
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .adapters.discord.bot import ChannelRouter
from .adapters.discord.builders import (
    build_leaderboard_embed,
    build_list_embed,
    build_profile_embed,
    deadline_reminder,
)
from .adapters.discord.handlers import (
    InteractionRouter,
    _format_message,
    is_admin,
)
from .config import Settings, get_settings
from .errors import ChannelUnavailableError, NotFoundError, OrderBoardError
from .models import Order, OrderStatus
from .scheduler import DeadlineScheduler
from .services.lifecycle import OrderLifecycle
from .services.orders import (
    STATUS_LABELS,
    cancellation_notice,
    history_line,
    stats_lines,
    summarize_orders,
    summary_line,
)
from .services.ratings import RatingService
from .services.sessions import InMemorySessionStore
from .services.wizard import OrderWizard
from .state import OrderStore
from .telemetry import get_telemetry
from .telemetry_decorator import track_command

logger = logging.getLogger(__name__)

ADMIN_ONLY = "This command requires an administrator role."


def build_bot(
    db_path: Path,
    intents: Optional[discord.Intents] = None,
    settings: Optional[Settings] = None,
) -> commands.Bot:
    if intents is None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
    app_id_raw = os.environ.get("DISCORD_APP_ID")
    application_id: Optional[int] = None
    if app_id_raw:
        try:
            application_id = int(app_id_raw)
        except ValueError:
            logger.warning("Invalid DISCORD_APP_ID: %s", app_id_raw)
    bot = commands.Bot(command_prefix="/", intents=intents, application_id=application_id)
    settings = settings or get_settings()
    store = OrderStore(db_path)
    router = ChannelRouter.from_env(settings)
    wizard = OrderWizard(
        store,
        InMemorySessionStore(),
        settings,
        level_channels=router.levels,
        default_channel_id=router.default,
    )
    lifecycle = OrderLifecycle(store, settings)
    ratings = RatingService(store)
    interactions = InteractionRouter(
        bot,
        router,
        settings,
        wizard=wizard,
        lifecycle=lifecycle,
        ratings=ratings,
    )
    setattr(bot, "order_store", store)
    setattr(bot, "interaction_router", interactions)
    scheduler: Optional[DeadlineScheduler] = None

    def _shutdown() -> None:  # pragma: no cover - process shutdown hook
        if scheduler is not None:
            scheduler.shutdown()
        get_telemetry().flush()

    atexit.register(_shutdown)

    async def _send_reminder(order: Order) -> None:
        if order.private_channel_id is None:
            raise ChannelUnavailableError(None)
        await interactions.workspace(None).post_notice(order.private_channel_id, deadline_reminder(order))

    async def _admin_guard(interaction: discord.Interaction) -> bool:
        if is_admin(interaction.user, settings):
            return True
        await interaction.response.send_message(ADMIN_ONLY, ephemeral=True)
        return False

    @bot.event
    async def on_ready() -> None:
        nonlocal scheduler
        logger.info("Order board connected as %s", bot.user)
        try:
            synced = await bot.tree.sync()
            logger.info("Synced %d commands", len(synced))
        except Exception as exc:  # pragma: no cover - logging only
            logger.exception("Failed to sync commands: %s", exc)
        if scheduler is None:
            scheduler = DeadlineScheduler(
                lifecycle,
                reminder_publisher=lambda order: asyncio.run_coroutine_threadsafe(
                    _send_reminder(order),
                    bot.loop,
                ),
                interval_minutes=settings.deadline_check_interval_minutes,
            )
            scheduler.start()

    @bot.listen("on_interaction")
    async def route_components(interaction: discord.Interaction) -> None:
        if interaction.type is discord.InteractionType.component:
            await interactions.dispatch(interaction)

    @bot.event
    async def on_message(message: discord.Message) -> None:
        if await interactions.handle_message(message):
            return
        await bot.process_commands(message)

    # Wizard ------------------------------------------------------------
    @app_commands.command(name="add", description="Create a new order")
    @track_command
    async def add(interaction: discord.Interaction) -> None:
        if not is_admin(interaction.user, settings):
            await interaction.response.send_message(
                "You do not have permission to create orders.",
                ephemeral=True,
            )
            return
        if router.create is not None and interaction.channel_id != router.create:
            await interaction.response.send_message(
                f"Orders can only be created in <#{router.create}>.",
                ephemeral=True,
            )
            return
        await interactions.start_wizard(interaction)

    @app_commands.command(name="cancel_active", description="Cancel your order creation in progress")
    @track_command
    async def cancel_active(interaction: discord.Interaction) -> None:
        if wizard.cancel(str(interaction.user.id)):
            message = "Your order creation has been cancelled."
        else:
            message = "You have no order creation in progress."
        await interaction.response.send_message(message, ephemeral=True)

    # Lifecycle ---------------------------------------------------------
    @app_commands.command(name="order_cancel", description="Cancel an open or assigned order")
    @track_command
    @app_commands.describe(order_id="Identifier of the order to cancel")
    async def order_cancel(interaction: discord.Interaction, order_id: str) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            result = await lifecycle.cancel(
                order_id.strip(),
                str(interaction.user.id),
                interactions.workspace(interaction.guild),
                is_admin=is_admin(interaction.user, settings),
            )
        except OrderBoardError as exc:
            await interaction.followup.send(str(exc), ephemeral=True)
            return
        await interaction.followup.send(
            cancellation_notice(result.order, actor_id=str(interaction.user.id), warnings=result.warnings),
            ephemeral=True,
        )

    @app_commands.command(name="reset_cooldown", description="Reset the verification cooldown of an order")
    @track_command
    @app_commands.describe(order_id="Identifier of the order")
    async def reset_cooldown(interaction: discord.Interaction, order_id: str) -> None:
        try:
            order = lifecycle.reset_cooldown(
                order_id.strip(),
                is_admin=is_admin(interaction.user, settings),
            )
        except OrderBoardError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        await interaction.response.send_message(
            f"Verification cooldown reset for order `{order.order_id}`.",
            ephemeral=True,
        )

    @app_commands.command(name="check_deadlines", description="Send deadline reminders now")
    @track_command
    async def check_deadlines(interaction: discord.Interaction) -> None:
        if not await _admin_guard(interaction):
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        due = lifecycle.due_deadline_reminders()
        reminded: List[str] = []
        for order in due:
            try:
                await _send_reminder(order)
            except (discord.HTTPException, ChannelUnavailableError):
                logger.exception("Failed to send deadline reminder for order %s", order.order_id)
                continue
            lifecycle.mark_reminded(order.order_id)
            reminded.append(order.order_id)
        if not due:
            message = "No deadlines are approaching."
        else:
            message = _format_message(
                [f"Sent {len(reminded)} of {len(due)} deadline reminder(s)."]
                + [f"• `{order_id}`" for order_id in reminded]
            )
        await interaction.followup.send(message, ephemeral=True)

    # Reports -----------------------------------------------------------
    @app_commands.command(name="order_list", description="List orders by status")
    @track_command
    @app_commands.choices(
        status=[
            app_commands.Choice(name="Open", value="OPEN"),
            app_commands.Choice(name="In progress", value="ASSIGNED"),
            app_commands.Choice(name="Completed", value="COMPLETED"),
            app_commands.Choice(name="All", value="ALL"),
        ]
    )
    async def order_list(
        interaction: discord.Interaction,
        status: Optional[app_commands.Choice[str]] = None,
    ) -> None:
        if not await _admin_guard(interaction):
            return
        value = status.value if status else "OPEN"
        if value == "ALL":
            orders = store.query_orders(limit=25)
            title = "📋 All orders"
        else:
            orders = store.query_orders(OrderStatus(value), limit=25)
            title = f"📋 {STATUS_LABELS[OrderStatus(value)]} orders"
        lines = [summary_line(summary) for summary in summarize_orders(orders, limit=25)]
        await interaction.response.send_message(
            embed=build_list_embed(title, lines, empty="No orders match."),
            ephemeral=True,
        )

    @app_commands.command(name="history", description="Show recently finished orders")
    @track_command
    @app_commands.describe(limit="Number of orders to show (1-10)")
    @app_commands.choices(
        filter=[
            app_commands.Choice(name="Completed", value="COMPLETED"),
            app_commands.Choice(name="Cancelled", value="CANCELLED"),
            app_commands.Choice(name="All", value="ALL"),
        ]
    )
    async def history(
        interaction: discord.Interaction,
        limit: int = 5,
        filter: Optional[app_commands.Choice[str]] = None,
    ) -> None:
        if not await _admin_guard(interaction):
            return
        limit = max(1, min(limit, 10))
        value = filter.value if filter else "ALL"
        status = None if value == "ALL" else OrderStatus(value)
        orders = store.order_history(limit, status)
        await interaction.response.send_message(
            embed=build_list_embed(
                "🗂️ Order history",
                [history_line(order) for order in orders],
                empty="No finished orders yet.",
            ),
            ephemeral=True,
        )

    @app_commands.command(name="stats", description="Show order and coder statistics")
    @track_command
    @app_commands.choices(
        kind=[
            app_commands.Choice(name="General", value="general"),
            app_commands.Choice(name="Orders", value="orders"),
            app_commands.Choice(name="Coders", value="coders"),
        ]
    )
    async def stats(
        interaction: discord.Interaction,
        kind: Optional[app_commands.Choice[str]] = None,
    ) -> None:
        if not await _admin_guard(interaction):
            return
        lines = stats_lines(store.order_stats(), store.coder_stats(), kind.value if kind else "general")
        await interaction.response.send_message(
            embed=build_list_embed("📊 Statistics", lines),
            ephemeral=True,
        )

    @app_commands.command(name="profile", description="Show a coder's level and XP")
    @track_command
    @app_commands.describe(member="Coder to inspect (defaults to you)")
    async def profile(interaction: discord.Interaction, member: Optional[discord.Member] = None) -> None:
        target = member or interaction.user
        try:
            coder_profile = ratings.coder_profile(str(target.id))
        except NotFoundError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        await interaction.response.send_message(
            embed=build_profile_embed(coder_profile, target.display_name),
            ephemeral=True,
        )

    @app_commands.command(name="leaderboard", description="Show the top coders")
    @track_command
    @app_commands.describe(limit="Number of coders to show (1-25)")
    async def leaderboard(interaction: discord.Interaction, limit: int = 10) -> None:
        await interaction.response.send_message(embed=build_leaderboard_embed(ratings.leaderboard(limit)))

    @app_commands.command(name="telemetry_report", description="Show bot usage telemetry")
    @track_command
    async def telemetry_report(interaction: discord.Interaction) -> None:
        if not await _admin_guard(interaction):
            return
        report = get_telemetry().generate_report()
        lines = [f"Uptime: {report['uptime_seconds'] / 3600:.1f} hour(s)", "**Commands (24h)**"]
        for name, data in sorted(report["commands"].items(), key=lambda item: -item[1]["usage_count"]):
            lines.append(
                f"• /{name}: {data['usage_count']} use(s), "
                f"{(data['success_rate'] or 0) * 100:.0f}% ok, {data['unique_users']} user(s)"
            )
        if report["errors"]:
            lines.append("**Errors (24h)**")
            lines.extend(f"• {name}: {count}" for name, count in report["errors"].items())
        if report["orders"]:
            lines.append("**Order transitions (7d)**")
            lines.extend(f"• {name}: {count}" for name, count in sorted(report["orders"].items()))
        await interaction.response.send_message(_format_message(lines), ephemeral=True)

    bot.tree.add_command(add)
    bot.tree.add_command(cancel_active)
    bot.tree.add_command(order_cancel)
    bot.tree.add_command(reset_cooldown)
    bot.tree.add_command(check_deadlines)
    bot.tree.add_command(order_list)
    bot.tree.add_command(history)
    bot.tree.add_command(stats)
    bot.tree.add_command(profile)
    bot.tree.add_command(leaderboard)
    bot.tree.add_command(telemetry_report)
    return bot


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    token = os.environ.get("DISCORD_TOKEN")
    if not token:
        raise RuntimeError("DISCORD_TOKEN environment variable must be set")
    db_path = Path(os.environ.get("ORDER_BOARD_DB", "order_board.db"))
    bot = build_bot(db_path)
    bot.run(token)


__all__ = ["build_bot", "main"]
