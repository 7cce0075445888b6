"""Discord message helpers, messaging surfaces and interaction routing.

Every component click and modal submission is decoded once into an action
from :mod:`order_board.interactions` and handed to :class:`InteractionRouter`,
which calls the services and renders the result. Services raise
:class:`~order_board.errors.OrderBoardError` subclasses; the router turns them
into ephemeral replies.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import discord
from discord.ext import commands

from ...config import Settings
from ...errors import (
    ChannelUnavailableError,
    DependencyError,
    NotFoundError,
    OrderBoardError,
    ValidationError,
)
from ...interactions import (
    ACTION_TYPES,
    AcceptOrder,
    Action,
    AdminComplete,
    BackToCategories,
    CancelWizard,
    CompleteOrder,
    ContinueAfterDate,
    ContinueToLevel,
    OpenConfirmation,
    PickCategory,
    PickDay,
    PickLevel,
    PickMonth,
    PickRoles,
    PickYear,
    RateProject,
    RequestVerification,
    ResolvePreview,
    SkipDate,
    SkipRoles,
    decode,
)
from ...models import Order, PreviewAction, RatingStatus, RoleRef, WizardStep
from ...services.lifecycle import LifecycleResult, OrderLifecycle, Workspace
from ...services.ratings import RatingOutcome, RatingService
from ...services.roles import CATEGORY_LABELS, find_role
from ...services.wizard import AnnouncementPublisher, OrderWizard
from ...telemetry import TelemetryCollector, get_telemetry
from .bot import ChannelRouter
from .builders import (
    ConfirmationModal,
    InitialOrderModal,
    build_category_view,
    build_date_view,
    build_expired_embed,
    build_history_embed,
    build_level_view,
    build_order_embed,
    build_order_view,
    build_preview_embed,
    build_preview_view,
    build_rating_prompt,
    build_rating_result_embed,
    build_rating_view,
    build_roles_view,
    build_workspace_embed,
    build_workspace_view,
    category_prompt,
    date_prompt,
    embed_mentions_order,
    welcome_message,
)

logger = logging.getLogger(__name__)

_MAX_MESSAGE_LENGTH = 1900

GENERIC_FAILURE = "Something went wrong while handling that. Please start again with /add."

LEVEL_UP_ANNOUNCE_MIN = 4

CLAMPED_NOTE = "Level 6 is reserved; the order was set to level 5."
CLAMPED_MODAL_TITLE = "Confirm order (level 6 reserved, set to 5)"

# Actions outside the creation wizard; failures there leave any wizard session alone.
LIFECYCLE_ACTIONS = (AcceptOrder, CompleteOrder, AdminComplete, RequestVerification, RateProject)


def _clamp_text(text: str) -> str:
    """Ensure Discord-compatible message length."""

    if len(text) <= _MAX_MESSAGE_LENGTH:
        return text
    return text[: _MAX_MESSAGE_LENGTH - 1].rstrip() + "…"


def _format_message(lines: Iterable[Optional[str]]) -> str:
    """Join message lines and clamp to Discord limits."""

    message = "\n".join(line for line in lines if line is not None)
    return _clamp_text(message)


async def _post_embed_to_channel(
    bot: commands.Bot,
    channel_id: Optional[int],
    *,
    embed: discord.Embed,
    content: Optional[str],
    purpose: str,
) -> None:
    if channel_id is None:
        logger.debug("Skipping %s embed post; channel not configured", purpose)
        return
    channel = bot.get_channel(channel_id)
    if channel is None:
        logger.warning("Failed to locate %s channel with id %s", purpose, channel_id)
        return
    try:
        await channel.send(content=content, embed=embed)
    except discord.HTTPException:
        logger.exception("Failed to send %s embed", purpose)


# Identity ------------------------------------------------------------
def is_admin(member: Any, settings: Settings) -> bool:
    """Administrator permission, or a configured admin role by id or name."""

    permissions = getattr(member, "guild_permissions", None)
    if permissions is not None and permissions.administrator:
        return True
    names = {name.lower() for name in settings.admin_role_names}
    ids = set(settings.admin_role_ids)
    return any(role.id in ids or role.name.lower() in names for role in getattr(member, "roles", []))


def is_elevated(member: Any, settings: Settings) -> bool:
    """Whether ``member`` may publish level 6 orders."""

    if settings.super_admin_role_id is None:
        permissions = getattr(member, "guild_permissions", None)
        return bool(permissions is not None and permissions.administrator)
    return any(role.id == settings.super_admin_role_id for role in getattr(member, "roles", []))


def role_directory(guild: Optional[discord.Guild]) -> List[RoleRef]:
    if guild is None:
        return []
    return [
        RoleRef(role_id=str(role.id), name=role.name, position=role.position, managed=role.managed)
        for role in guild.roles
    ]


def role_resolver(guild: Optional[discord.Guild]) -> Callable[[str], Optional[str]]:
    directory = role_directory(guild)

    def _resolve(name: str) -> Optional[str]:
        role = find_role(name, directory)
        return role.role_id if role else None

    return _resolve


# Messaging surfaces --------------------------------------------------
class DiscordAnnouncementPublisher(AnnouncementPublisher):
    def __init__(self, bot: commands.Bot) -> None:
        self._bot = bot

    async def publish(self, order: Order, channel_id: int) -> int:
        channel = self._bot.get_channel(channel_id)
        if channel is None:
            raise ChannelUnavailableError(channel_id)
        message = await channel.send(embed=build_order_embed(order), view=build_order_view(order))
        return message.id


class DiscordWorkspace(Workspace):
    """Private project channels, archives and notices on a Discord guild."""

    def __init__(
        self,
        bot: commands.Bot,
        router: ChannelRouter,
        settings: Settings,
        guild: Optional[discord.Guild] = None,
    ) -> None:
        self._bot = bot
        self._router = router
        self._settings = settings
        self._guild = guild

    def _channel(self, channel_id: int) -> Any:
        channel = self._bot.get_channel(channel_id)
        if channel is None:
            raise ChannelUnavailableError(channel_id)
        return channel

    async def create_private_space(self, order: Order, coder_id: str) -> int:
        guild = self._guild
        if guild is None:
            raise NotFoundError("Private channels can only be created inside a server.")
        visible = discord.PermissionOverwrite(view_channel=True, send_messages=True, read_message_history=True)
        overwrites: Dict[Any, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            guild.me: visible,
        }
        for user_id in (coder_id, order.admin_id):
            member = guild.get_member(int(user_id))
            if member is None:
                logger.warning("Member %s not cached; skipping overwrite for order %s", user_id, order.order_id)
                continue
            overwrites[member] = visible
        category = None
        if self._router.projects_category is not None:
            category = guild.get_channel(self._router.projects_category)
            if not isinstance(category, discord.CategoryChannel):
                logger.warning(
                    "Projects category %s not found; creating channel without a parent",
                    self._router.projects_category,
                )
                category = None
        channel = await guild.create_text_channel(
            f"project-{order.order_id}",
            category=category,
            overwrites=overwrites,
            reason=f"Order {order.order_id} accepted",
        )
        logger.info("Created private channel %s for order %s", channel.id, order.order_id)
        return channel.id

    async def post_welcome(self, channel_id: int, order: Order, coder_id: str) -> None:
        channel = self._channel(channel_id)
        await channel.send(
            content=welcome_message(order, coder_id),
            embed=build_workspace_embed(order, coder_id),
            view=build_workspace_view(order),
        )

    async def archive_space(self, channel_id: int, coder_id: Optional[str], label: str) -> None:
        channel = self._channel(channel_id)
        guild = channel.guild
        category = discord.utils.get(guild.categories, name=label)
        if category is None:
            category = await guild.create_category(label, reason="Project archive")
            logger.info("Created archive category %s", label)
        if coder_id:
            member = guild.get_member(int(coder_id))
            if member is not None:
                await channel.set_permissions(member, view_channel=False, reason="Project closed")
            else:
                logger.warning("Coder %s not cached; access to %s left unchanged", coder_id, channel_id)
        await channel.edit(category=category, sync_permissions=False, reason="Project archived")

    async def post_notice(self, channel_id: int, text: str) -> None:
        await self._channel(channel_id).send(_clamp_text(text))

    async def mention_verifiers(self, channel_id: int, order: Order, coder_id: str) -> None:
        channel = self._channel(channel_id)
        target = (
            f"<@&{self._settings.verifier_role_id}>"
            if self._settings.verifier_role_id
            else f"<@{order.admin_id}>"
        )
        await channel.send(
            content=f"🔎 {target} <@{coder_id}> asks for order `{order.order_id}` to be verified.",
            embed=build_rating_prompt(order),
            view=build_rating_view(order),
        )

    async def post_rating_prompt(self, channel_id: int, order: Order) -> None:
        await self._channel(channel_id).send(embed=build_rating_prompt(order), view=build_rating_view(order))

    async def retract_announcement(self, order: Order) -> bool:
        if order.channel_id and order.message_id:
            channel = self._bot.get_channel(order.channel_id)
            if channel is not None:
                try:
                    message = await channel.fetch_message(order.message_id)
                except discord.NotFound:
                    logger.info("Announcement %s for order %s already gone", order.message_id, order.order_id)
                else:
                    await message.delete()
                    return True
        # Fall back to scanning recent announcements for the order id.
        candidates = self._router.announcement_channels(order.level)
        if order.channel_id and order.channel_id not in candidates:
            candidates.insert(0, order.channel_id)
        for channel_id in candidates:
            channel = self._bot.get_channel(channel_id)
            if channel is None:
                continue
            async for message in channel.history(limit=self._settings.announcement_scan_limit):
                if self._bot.user is None or message.author.id != self._bot.user.id:
                    continue
                if any(embed_mentions_order(embed, order.order_id) for embed in message.embeds):
                    await message.delete()
                    return True
        return False

    async def post_history(self, order: Order) -> None:
        await _post_embed_to_channel(
            self._bot,
            self._router.history,
            embed=build_history_embed(order),
            content=None,
            purpose="history",
        )

    async def announce_level_up(self, outcome: RatingOutcome) -> None:
        result = outcome.result
        if result.status is not RatingStatus.LEVEL_UP or result.new_level < LEVEL_UP_ANNOUNCE_MIN:
            return
        await _post_embed_to_channel(
            self._bot,
            self._router.level_up,
            embed=build_rating_result_embed(outcome),
            content=f"🎉 Congratulations <@{outcome.coder.user_id}>, you reached level {result.new_level}!",
            purpose="level up",
        )

    async def notify_coder(self, outcome: RatingOutcome) -> None:
        user_id = int(outcome.coder.user_id)
        try:
            user = self._bot.get_user(user_id) or await self._bot.fetch_user(user_id)
            await user.send(embed=build_rating_result_embed(outcome))
        except discord.HTTPException:
            logger.warning("Could not DM rating result to %s", user_id)


# Interaction routing -------------------------------------------------
Handler = Callable[[discord.Interaction, Any], Awaitable[None]]


async def _reply(interaction: discord.Interaction, content: str, **kwargs: Any) -> None:
    content = _clamp_text(content)
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=True, **kwargs)
    else:
        await interaction.response.send_message(content, ephemeral=True, **kwargs)


def _with_warnings(result: LifecycleResult) -> str:
    lines = [result.message]
    if result.warnings:
        lines.append(f"⚠️ Note: {'; '.join(result.warnings)}.")
    return _format_message(lines)


class InteractionRouter:
    """Dispatches decoded component actions to the services."""

    def __init__(
        self,
        bot: commands.Bot,
        router: ChannelRouter,
        settings: Settings,
        *,
        wizard: OrderWizard,
        lifecycle: OrderLifecycle,
        ratings: RatingService,
        telemetry: Optional[TelemetryCollector] = None,
    ) -> None:
        self._bot = bot
        self._router = router
        self._settings = settings
        self.wizard = wizard
        self.lifecycle = lifecycle
        self.ratings = ratings
        self._telemetry = telemetry or get_telemetry()
        self._handlers: Dict[type, Handler] = {
            AcceptOrder: self._accept,
            CompleteOrder: self._complete,
            AdminComplete: self._admin_complete,
            RequestVerification: self._request_verification,
            RateProject: self._rate,
            ResolvePreview: self._resolve_preview,
            CancelWizard: self._cancel_wizard,
            PickYear: self._pick_year,
            PickMonth: self._pick_month,
            PickDay: self._pick_day,
            ContinueAfterDate: self._continue_after_date,
            SkipDate: self._skip_date,
            PickCategory: self._pick_category,
            PickRoles: self._pick_roles,
            BackToCategories: self._back_to_categories,
            ContinueToLevel: self._continue_to_level,
            SkipRoles: self._skip_roles,
            PickLevel: self._pick_level,
            OpenConfirmation: self._open_confirmation,
        }
        missing = set(ACTION_TYPES.values()) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for interaction kinds: {sorted(cls.KIND for cls in missing)}")

    def workspace(self, guild: Optional[discord.Guild]) -> DiscordWorkspace:
        return DiscordWorkspace(self._bot, self._router, self._settings, guild)

    # Entry points ------------------------------------------------------
    async def dispatch(self, interaction: discord.Interaction) -> bool:
        """Handle a component interaction; returns ``False`` for foreign ids."""

        data = interaction.data or {}
        action: Optional[Action] = decode(data.get("custom_id"))
        if action is None:
            return False
        handler = self._handlers[type(action)]
        await self._run(
            interaction,
            action.KIND,
            lambda: handler(interaction, action),
            wizard_step=not isinstance(action, LIFECYCLE_ACTIONS),
        )
        return True

    async def start_wizard(self, interaction: discord.Interaction) -> None:
        async def _handle() -> None:
            self.wizard.start(str(interaction.user.id), interaction.channel_id)
            await interaction.response.send_modal(InitialOrderModal(self.submit_initial))

        await self._run(interaction, "add", _handle)

    async def submit_initial(self, interaction: discord.Interaction, values: Dict[str, str]) -> None:
        async def _handle() -> None:
            user_id = str(interaction.user.id)
            self.wizard.submit_initial(
                user_id,
                client_name=values["client_name"],
                compensation=values["compensation"],
                description=values["description"],
            )
            await interaction.response.send_message(
                date_prompt(None, None, None),
                view=self._date_view(user_id),
                ephemeral=True,
            )

        await self._run(interaction, "initial_form", _handle)

    async def submit_confirmation(self, interaction: discord.Interaction, values: Dict[str, str]) -> None:
        async def _handle() -> None:
            user_id = str(interaction.user.id)
            order_ids: List[str] = []

            async def _expired() -> None:
                await interaction.edit_original_response(
                    content=None,
                    embed=build_expired_embed(order_ids[0] if order_ids else "?"),
                    view=None,
                )

            preview = await self.wizard.submit_confirmation(
                user_id,
                client_name=values["client_name"],
                compensation=values["compensation"],
                description=values["description"],
                tags_text=values.get("tags", ""),
                roles_text=values.get("required_roles", ""),
                elevated=is_elevated(interaction.user, self._settings),
                resolve_role=role_resolver(interaction.guild),
                on_expire=_expired,
            )
            order_ids.append(preview.order_id)
            note = CLAMPED_NOTE if preview.level_clamped else None
            await interaction.response.send_message(
                content=note,
                embed=build_preview_embed(preview),
                view=build_preview_view(),
                ephemeral=True,
            )

        await self._run(interaction, "confirmation_form", _handle)

    async def handle_message(self, message: discord.Message) -> bool:
        """Feed a chat message to the user's wizard; returns whether it was consumed."""

        if message.author.bot or message.guild is None:
            return False
        user_id = str(message.author.id)
        session = self.wizard.session(user_id)
        if session is None:
            return False
        before = session.step
        try:
            reply = self.wizard.handle_text(user_id, message.channel.id, message.content)
        except ValidationError as exc:
            await message.reply(str(exc))
            return True
        if reply is None:
            return False
        if before is WizardStep.INITIAL_FORM and reply.step is WizardStep.DATE_SELECTION:
            await message.channel.send(
                _format_message([reply.message, date_prompt(None, None, None)]),
                view=self._date_view(user_id),
            )
        else:
            await message.reply(reply.message)
        return True

    async def _run(
        self,
        interaction: discord.Interaction,
        name: str,
        call: Callable[[], Awaitable[None]],
        *,
        wizard_step: bool = True,
    ) -> None:
        user_id = str(interaction.user.id)
        try:
            await call()
        except OrderBoardError as exc:
            self._telemetry.track_error(type(exc).__name__, command=name, user_id=user_id, error_details=str(exc))
            if wizard_step and isinstance(exc, DependencyError):
                self.wizard.abort(user_id)
            logger.info("Interaction %s by %s rejected: %s", name, user_id, exc)
            await self._safe_reply(interaction, str(exc))
        except Exception as exc:
            logger.exception("Unhandled error in interaction %s for %s", name, user_id)
            self._telemetry.track_error(type(exc).__name__, command=name, user_id=user_id, error_details=str(exc))
            if wizard_step:
                self.wizard.abort(user_id)
            await self._safe_reply(interaction, GENERIC_FAILURE)

    async def _safe_reply(self, interaction: discord.Interaction, content: str) -> None:
        try:
            await _reply(interaction, content)
        except discord.HTTPException:
            logger.exception("Failed to send error reply")

    # Wizard views ------------------------------------------------------
    def _date_view(self, user_id: str) -> discord.ui.View:
        selection = self.wizard.date_selection(user_id)
        return build_date_view(
            self.wizard.year_options(),
            year=selection.year if selection else None,
            month=selection.month if selection else None,
            day_chunks=self.wizard.day_choices(user_id),
            picked_day=selection.day if selection else None,
        )

    async def _show_date(self, interaction: discord.Interaction, user_id: str) -> None:
        selection = self.wizard.date_selection(user_id)
        session = self.wizard.session(user_id)
        await interaction.response.edit_message(
            content=date_prompt(
                selection.year if selection else None,
                selection.month if selection else None,
                session.data.deadline if session else None,
            ),
            view=self._date_view(user_id),
        )

    async def _show_categories(self, interaction: discord.Interaction, user_id: str) -> None:
        session = self.wizard.session(user_id)
        selected = list(session.data.required_roles) if session else []
        await interaction.response.edit_message(
            content=category_prompt(selected),
            view=build_category_view(self.wizard.categories),
        )

    async def _show_levels(self, interaction: discord.Interaction) -> None:
        elevated = is_elevated(interaction.user, self._settings)
        await interaction.response.edit_message(
            content="🎚️ Choose the difficulty level of this order.",
            view=build_level_view(self.wizard.level_options(elevated)),
        )

    @staticmethod
    def _values(interaction: discord.Interaction) -> List[str]:
        return list((interaction.data or {}).get("values", []))

    def _first_int(self, interaction: discord.Interaction) -> int:
        values = self._values(interaction)
        if not values:
            raise ValidationError("Nothing was selected.")
        try:
            return int(values[0])
        except ValueError as exc:
            raise ValidationError(f"Invalid selection: {values[0]}") from exc

    # Wizard handlers ---------------------------------------------------
    async def _cancel_wizard(self, interaction: discord.Interaction, action: CancelWizard) -> None:
        self.wizard.cancel(str(interaction.user.id))
        await interaction.response.edit_message(content="Order creation cancelled.", embed=None, view=None)

    async def _pick_year(self, interaction: discord.Interaction, action: PickYear) -> None:
        user_id = str(interaction.user.id)
        self.wizard.select_year(user_id, self._first_int(interaction))
        await self._show_date(interaction, user_id)

    async def _pick_month(self, interaction: discord.Interaction, action: PickMonth) -> None:
        user_id = str(interaction.user.id)
        self.wizard.select_month(user_id, self._first_int(interaction))
        await self._show_date(interaction, user_id)

    async def _pick_day(self, interaction: discord.Interaction, action: PickDay) -> None:
        user_id = str(interaction.user.id)
        self.wizard.select_day(user_id, self._first_int(interaction))
        await self._show_date(interaction, user_id)

    async def _continue_after_date(self, interaction: discord.Interaction, action: ContinueAfterDate) -> None:
        user_id = str(interaction.user.id)
        self.wizard.continue_after_date(user_id)
        await self._show_categories(interaction, user_id)

    async def _skip_date(self, interaction: discord.Interaction, action: SkipDate) -> None:
        user_id = str(interaction.user.id)
        self.wizard.skip_date(user_id)
        await self._show_categories(interaction, user_id)

    async def _pick_category(self, interaction: discord.Interaction, action: PickCategory) -> None:
        user_id = str(interaction.user.id)
        values = self._values(interaction)
        if not values:
            raise ValidationError("Pick a category.")
        category = values[0]
        roles = self.wizard.select_category(user_id, category, role_directory(interaction.guild))
        label = CATEGORY_LABELS.get(category, category)
        content = f"Pick the {label} roles this order needs." if roles else f"No {label} roles exist on this server."
        await interaction.response.edit_message(content=content, view=build_roles_view(category, roles))

    async def _pick_roles(self, interaction: discord.Interaction, action: PickRoles) -> None:
        user_id = str(interaction.user.id)
        self.wizard.select_roles(user_id, self._values(interaction), role_directory(interaction.guild))
        await self._show_categories(interaction, user_id)

    async def _back_to_categories(self, interaction: discord.Interaction, action: BackToCategories) -> None:
        user_id = str(interaction.user.id)
        self.wizard.back_to_categories(user_id)
        await self._show_categories(interaction, user_id)

    async def _continue_to_level(self, interaction: discord.Interaction, action: ContinueToLevel) -> None:
        self.wizard.continue_to_level(str(interaction.user.id))
        await self._show_levels(interaction)

    async def _skip_roles(self, interaction: discord.Interaction, action: SkipRoles) -> None:
        self.wizard.skip_roles(str(interaction.user.id))
        await self._show_levels(interaction)

    async def _pick_level(self, interaction: discord.Interaction, action: PickLevel) -> None:
        user_id = str(interaction.user.id)
        choice = self.wizard.select_level(
            user_id,
            self._first_int(interaction),
            elevated=is_elevated(interaction.user, self._settings),
        )
        title = CLAMPED_MODAL_TITLE if choice.clamped else "Confirm order"
        await interaction.response.send_modal(
            ConfirmationModal(self.submit_confirmation, self.wizard.confirmation_defaults(user_id), title=title)
        )

    async def _open_confirmation(self, interaction: discord.Interaction, action: OpenConfirmation) -> None:
        user_id = str(interaction.user.id)
        session = self.wizard.session(user_id)
        if session is not None and session.step is WizardStep.LEVEL_SELECTION:
            raise ValidationError("Pick a level first.")
        await interaction.response.send_modal(
            ConfirmationModal(self.submit_confirmation, self.wizard.confirmation_defaults(user_id))
        )

    async def _resolve_preview(self, interaction: discord.Interaction, action: ResolvePreview) -> None:
        user_id = str(interaction.user.id)
        if action.action is PreviewAction.CANCEL:
            await self.wizard.resolve(user_id, PreviewAction.CANCEL)
            await interaction.response.edit_message(content="Order creation cancelled.", embed=None, view=None)
            return
        await interaction.response.defer()
        result = await self.wizard.resolve(user_id, PreviewAction.PUBLISH, DiscordAnnouncementPublisher(self._bot))
        if result is None:
            return
        await interaction.edit_original_response(
            content=f"📢 Order `{result.order.order_id}` published in <#{result.channel_id}>.",
            embed=None,
            view=None,
        )

    # Lifecycle handlers ------------------------------------------------
    async def _accept(self, interaction: discord.Interaction, action: AcceptOrder) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.lifecycle.accept(
            action.order_id,
            str(interaction.user.id),
            self.workspace(interaction.guild),
        )
        await interaction.followup.send(result.message, ephemeral=True)
        if interaction.message is not None:
            view = build_order_view(result.order)
            view.disable_all_items()
            try:
                await interaction.message.edit(view=view)
            except discord.HTTPException:
                logger.warning("Could not disable accept button for order %s", action.order_id)

    async def _after_completion(self, result: LifecycleResult, workspace: DiscordWorkspace) -> None:
        channel_id = result.order.private_channel_id
        if channel_id is None or result.order.assigned_to is None:
            return
        try:
            await workspace.post_rating_prompt(channel_id, result.order)
        except (discord.HTTPException, ChannelUnavailableError):
            logger.exception("Failed to post rating prompt for order %s", result.order.order_id)

    async def _complete(self, interaction: discord.Interaction, action: CompleteOrder) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        workspace = self.workspace(interaction.guild)
        result = await self.lifecycle.complete(
            action.order_id,
            str(interaction.user.id),
            workspace,
            is_admin=is_admin(interaction.user, self._settings),
        )
        await self._after_completion(result, workspace)
        await interaction.followup.send(_with_warnings(result), ephemeral=True)

    async def _admin_complete(self, interaction: discord.Interaction, action: AdminComplete) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        workspace = self.workspace(interaction.guild)
        result = await self.lifecycle.admin_complete(
            action.order_id,
            str(interaction.user.id),
            workspace,
            is_admin=is_admin(interaction.user, self._settings),
        )
        await self._after_completion(result, workspace)
        await interaction.followup.send(_with_warnings(result), ephemeral=True)

    async def _request_verification(self, interaction: discord.Interaction, action: RequestVerification) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.lifecycle.request_verification(
            action.order_id,
            str(interaction.user.id),
            self.workspace(interaction.guild),
        )
        await interaction.followup.send(result.message, ephemeral=True)

    async def _rate(self, interaction: discord.Interaction, action: RateProject) -> None:
        outcome = self.ratings.rate_project(
            action.order_id,
            action.coder_id,
            str(interaction.user.id),
            action.rating,
            is_admin=is_admin(interaction.user, self._settings),
        )
        await interaction.response.edit_message(embed=build_rating_result_embed(outcome), view=None)
        workspace = self.workspace(interaction.guild)
        if outcome.order_completed:
            for warning in await self.lifecycle.archive_rated(outcome.order, workspace):
                logger.warning("Order %s: %s", outcome.order.order_id, warning)
            try:
                await workspace.post_history(outcome.order)
            except discord.HTTPException:
                logger.exception("Failed to post history entry for order %s", outcome.order.order_id)
        await workspace.notify_coder(outcome)
        await workspace.announce_level_up(outcome)


__all__ = [
    "DiscordAnnouncementPublisher",
    "DiscordWorkspace",
    "InteractionRouter",
    "is_admin",
    "is_elevated",
    "role_directory",
    "role_resolver",
    "_post_embed_to_channel",
    "_clamp_text",
    "_format_message",
]
