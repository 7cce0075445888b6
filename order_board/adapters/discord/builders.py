"""Discord embed, view and modal builders.

Construction helpers for the Discord UI objects the bot sends. Every
component carries a ``custom_id`` from :mod:`order_board.interactions`; clicks
are routed by the bot's interaction listener rather than by view callbacks.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import discord

from ...interactions import (
    AcceptOrder,
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
    encode,
)
from ...models import Coder, Order, PreviewAction, RatingStatus, RequiredRole, RoleRef
from ...services.dates import MONTH_NAMES, ordinal
from ...services.orders import LEVEL_LABELS, STATUS_LABELS, format_duration, level_label
from ...services.ratings import CoderProfile, RatingOutcome
from ...services.roles import CATEGORY_LABELS
from ...services.wizard import NO_ROLES_PLACEHOLDER, Preview
from ...xp import progress_bar

WIZARD_VIEW_TIMEOUT = 600

LEVEL_COLOURS = {
    1: discord.Colour.green(),
    2: discord.Colour.gold(),
    3: discord.Colour.orange(),
    4: discord.Colour.red(),
    5: discord.Colour.dark_red(),
    6: discord.Colour.darker_grey(),
}

RATING_RESULT_TITLES = {
    RatingStatus.LEVEL_UP: "🎉 Level up!",
    RatingStatus.SUCCESS: "✅ Project rated",
    RatingStatus.LEVEL_DOWN: "⬇️ Level decreased",
    RatingStatus.BANNED: "⛔ Banned from progression",
}

ModalHandler = Callable[[discord.Interaction, Dict[str, str]], Awaitable[None]]


def _timestamp(day: date, style: str = "D") -> str:
    moment = datetime.combine(day, time(23, 59), tzinfo=timezone.utc)
    return f"<t:{int(moment.timestamp())}:{style}>"


def _roles_text(roles: Sequence[RequiredRole]) -> str:
    return ", ".join(role.mention for role in roles) if roles else "None"


def _button(label: str, custom_id: str, style: discord.ButtonStyle, *, emoji: Optional[str] = None, row: Optional[int] = None) -> discord.ui.Button:
    return discord.ui.Button(label=label, custom_id=custom_id, style=style, emoji=emoji, row=row)


class ComponentView(discord.ui.View):
    """View whose items are routed by ``custom_id`` instead of callbacks."""

    def __init__(self, *, timeout: Optional[float] = None) -> None:
        super().__init__(timeout=timeout)

    def disable_all_items(self) -> None:
        for item in self.children:
            item.disabled = True


# Public order announcement ---------------------------------------------
def build_order_embed(order: Order, *, title: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(
        title=title or f"📋 New order · {level_label(order.level)}",
        description=order.description,
        colour=LEVEL_COLOURS.get(order.level, discord.Colour.blurple()),
        timestamp=order.created_at or datetime.now(timezone.utc),
    )
    embed.add_field(name="Client", value=order.client_name, inline=True)
    embed.add_field(name="Compensation", value=order.compensation, inline=True)
    embed.add_field(name="Level", value=level_label(order.level), inline=True)
    embed.add_field(
        name="Deadline",
        value=_timestamp(order.deadline) if order.deadline else "No deadline",
        inline=True,
    )
    embed.add_field(name="Required skills", value=_roles_text(order.required_roles), inline=False)
    if order.tags:
        embed.add_field(name="Tags", value=", ".join(f"`{tag}`" for tag in order.tags), inline=False)
    embed.add_field(name="Order ID", value=order.order_id, inline=False)
    embed.set_footer(text=f"Order ID: {order.order_id}")
    return embed


def build_order_view(order: Order) -> ComponentView:
    view = ComponentView()
    view.add_item(
        _button("Accept order", encode(AcceptOrder(order.order_id)), discord.ButtonStyle.success, emoji="✅")
    )
    return view


def embed_mentions_order(embed: discord.Embed, order_id: str) -> bool:
    """Whether an announcement embed refers to ``order_id``."""

    if embed.footer and embed.footer.text and order_id in embed.footer.text:
        return True
    return any(order_id in (field.value or "") for field in embed.fields)


# Wizard --------------------------------------------------------------
class InitialOrderModal(discord.ui.Modal):
    def __init__(self, handler: ModalHandler) -> None:
        super().__init__(title="New order", timeout=WIZARD_VIEW_TIMEOUT)
        self._handler = handler
        self.client_input = discord.ui.TextInput(label="Client name", max_length=100)
        self.compensation_input = discord.ui.TextInput(
            label="Compensation",
            placeholder="e.g. 50$",
            max_length=100,
        )
        self.description_input = discord.ui.TextInput(
            label="Description",
            style=discord.TextStyle.long,
            max_length=1000,
        )
        self.add_item(self.client_input)
        self.add_item(self.compensation_input)
        self.add_item(self.description_input)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self._handler(
            interaction,
            {
                "client_name": self.client_input.value,
                "compensation": self.compensation_input.value,
                "description": self.description_input.value,
            },
        )


class ConfirmationModal(discord.ui.Modal):
    def __init__(self, handler: ModalHandler, defaults: Dict[str, str], *, title: str = "Confirm order") -> None:
        super().__init__(title=title, timeout=WIZARD_VIEW_TIMEOUT)
        self._handler = handler
        self.client_input = discord.ui.TextInput(
            label="Client name", default=defaults.get("client_name"), max_length=100
        )
        self.compensation_input = discord.ui.TextInput(
            label="Compensation", default=defaults.get("compensation"), max_length=100
        )
        self.description_input = discord.ui.TextInput(
            label="Description",
            style=discord.TextStyle.long,
            default=defaults.get("description"),
            max_length=1000,
        )
        self.tags_input = discord.ui.TextInput(
            label="Tags (comma separated)",
            default=defaults.get("tags") or None,
            required=False,
            max_length=300,
        )
        self.roles_input = discord.ui.TextInput(
            label="Required roles (comma separated)",
            default=defaults.get("required_roles") or None,
            required=False,
            max_length=500,
        )
        for item in (
            self.client_input,
            self.compensation_input,
            self.description_input,
            self.tags_input,
            self.roles_input,
        ):
            self.add_item(item)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self._handler(
            interaction,
            {
                "client_name": self.client_input.value,
                "compensation": self.compensation_input.value,
                "description": self.description_input.value,
                "tags": self.tags_input.value or "",
                "required_roles": self.roles_input.value or "",
            },
        )


def _cancel_button(row: int) -> discord.ui.Button:
    return _button("Cancel order", encode(CancelWizard()), discord.ButtonStyle.danger, row=row)


def build_date_view(
    years: Iterable[int],
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
    day_chunks: Sequence[Sequence[int]] = (),
    picked_day: Optional[int] = None,
) -> ComponentView:
    view = ComponentView(timeout=WIZARD_VIEW_TIMEOUT)
    view.add_item(
        discord.ui.Select(
            custom_id=encode(PickYear()),
            placeholder="Year",
            options=[
                discord.SelectOption(label=str(value), value=str(value), default=value == year)
                for value in years
            ],
            row=0,
        )
    )
    view.add_item(
        discord.ui.Select(
            custom_id=encode(PickMonth()),
            placeholder="Month",
            options=[
                discord.SelectOption(label=name, value=str(index), default=index == month)
                for index, name in enumerate(MONTH_NAMES, start=1)
            ],
            row=1,
        )
    )
    for part, days in enumerate(day_chunks[:2]):
        view.add_item(
            discord.ui.Select(
                custom_id=encode(PickDay(part)),
                placeholder=f"Day ({days[0]}-{days[-1]})",
                options=[
                    discord.SelectOption(
                        label=str(day),
                        value=str(day),
                        description=f"{ordinal(day)} of {MONTH_NAMES[month - 1]}" if month else None,
                        default=day == picked_day,
                    )
                    for day in days
                ],
                row=2 + part,
            )
        )
    view.add_item(_button("Continue", encode(ContinueAfterDate()), discord.ButtonStyle.success, row=4))
    view.add_item(_button("No deadline", encode(SkipDate()), discord.ButtonStyle.secondary, row=4))
    view.add_item(_cancel_button(4))
    return view


def date_prompt(year: Optional[int], month: Optional[int], deadline: Optional[date]) -> str:
    if deadline is not None:
        return f"📅 Deadline set to **{deadline.isoformat()}**. Press Continue, or pick another date."
    if year and month:
        return f"📅 Pick a day in {calendar.month_name[month]} {year}."
    return "📅 Choose a deadline: pick the year and month first, or skip it."


def build_category_view(categories: Iterable[str]) -> ComponentView:
    view = ComponentView(timeout=WIZARD_VIEW_TIMEOUT)
    view.add_item(
        discord.ui.Select(
            custom_id=encode(PickCategory()),
            placeholder="Choose a skill category",
            options=[
                discord.SelectOption(label=CATEGORY_LABELS.get(name, name), value=name)
                for name in categories
            ],
            row=0,
        )
    )
    view.add_item(_button("Continue", encode(ContinueToLevel()), discord.ButtonStyle.success, row=1))
    view.add_item(_button("Skip roles", encode(SkipRoles()), discord.ButtonStyle.secondary, row=1))
    view.add_item(_cancel_button(1))
    return view


def category_prompt(selected: Sequence[RequiredRole]) -> str:
    return f"🧩 Pick the skills this order needs.\nSelected: {_roles_text(selected)}"


def build_roles_view(category: str, roles: Sequence[RoleRef]) -> ComponentView:
    view = ComponentView(timeout=WIZARD_VIEW_TIMEOUT)
    if roles:
        options = [discord.SelectOption(label=role.name[:100], value=role.role_id) for role in roles]
        max_values = len(options)
    else:
        options = [discord.SelectOption(label="No roles in this category", value=NO_ROLES_PLACEHOLDER)]
        max_values = 1
    view.add_item(
        discord.ui.Select(
            custom_id=encode(PickRoles(category)),
            placeholder=f"{CATEGORY_LABELS.get(category, category)} roles",
            options=options,
            min_values=1,
            max_values=max_values,
            row=0,
        )
    )
    view.add_item(_button("Back to categories", encode(BackToCategories()), discord.ButtonStyle.secondary, row=1))
    view.add_item(_button("Continue", encode(ContinueToLevel()), discord.ButtonStyle.success, row=1))
    return view


def build_level_view(levels: Iterable[int]) -> ComponentView:
    view = ComponentView(timeout=WIZARD_VIEW_TIMEOUT)
    options = []
    for level in levels:
        emoji, name = LEVEL_LABELS[level]
        options.append(discord.SelectOption(label=f"Level {level} · {name}", value=str(level), emoji=emoji))
    view.add_item(
        discord.ui.Select(custom_id=encode(PickLevel()), placeholder="Difficulty level", options=options, row=0)
    )
    view.add_item(_button("Open confirmation form", encode(OpenConfirmation()), discord.ButtonStyle.primary, row=1))
    view.add_item(_cancel_button(1))
    return view


def expiry_text(seconds: float) -> str:
    if seconds >= 60:
        minutes = round(seconds / 60)
        return f"{minutes} minute{'' if minutes == 1 else 's'}"
    whole = max(1, round(seconds))
    return f"{whole} second{'' if whole == 1 else 's'}"


def build_preview_embed(preview: Preview) -> discord.Embed:
    draft = preview.draft
    embed = discord.Embed(
        title=f"👀 Preview · {level_label(draft.level or 1)}",
        description=draft.description,
        colour=LEVEL_COLOURS.get(draft.level or 1, discord.Colour.blurple()),
    )
    embed.add_field(name="Client", value=draft.client_name, inline=True)
    embed.add_field(name="Compensation", value=draft.compensation, inline=True)
    embed.add_field(
        name="Deadline",
        value=_timestamp(draft.deadline) if draft.deadline else "No deadline",
        inline=True,
    )
    embed.add_field(name="Required skills", value=_roles_text(draft.required_roles), inline=False)
    if draft.tags:
        embed.add_field(name="Tags", value=", ".join(f"`{tag}`" for tag in draft.tags), inline=False)
    embed.add_field(
        name="Publishing to",
        value=f"<#{preview.channel_id}>" if preview.channel_id else "No channel configured",
        inline=False,
    )
    embed.set_footer(text=f"Order ID: {preview.order_id} · expires in {expiry_text(preview.expires_in)}")
    return embed


def build_preview_view() -> ComponentView:
    view = ComponentView(timeout=WIZARD_VIEW_TIMEOUT)
    view.add_item(
        _button("Publish", encode(ResolvePreview(PreviewAction.PUBLISH)), discord.ButtonStyle.success, emoji="📢")
    )
    view.add_item(
        _button("Cancel", encode(ResolvePreview(PreviewAction.CANCEL)), discord.ButtonStyle.danger, emoji="✖️")
    )
    return view


def build_expired_embed(order_id: str) -> discord.Embed:
    return discord.Embed(
        title="⌛ Preview expired",
        description=f"Order `{order_id}` was not published. Run /add to start again.",
        colour=discord.Colour.dark_grey(),
    )


# Private workspace ---------------------------------------------------
def build_workspace_embed(order: Order, coder_id: str) -> discord.Embed:
    embed = build_order_embed(order, title=f"🛠️ Project {order.order_id}")
    embed.add_field(name="Coder", value=f"<@{coder_id}>", inline=True)
    embed.add_field(name="Admin", value=f"<@{order.admin_id}>", inline=True)
    return embed


def build_workspace_view(order: Order) -> ComponentView:
    view = ComponentView()
    view.add_item(_button("Mark as completed", encode(CompleteOrder(order.order_id)), discord.ButtonStyle.success))
    view.add_item(
        _button("Request verification", encode(RequestVerification(order.order_id)), discord.ButtonStyle.primary)
    )
    view.add_item(
        _button("Admin: verify & complete", encode(AdminComplete(order.order_id)), discord.ButtonStyle.secondary)
    )
    return view


def welcome_message(order: Order, coder_id: str) -> str:
    lines = [
        f"Welcome to the project channel! <@{coder_id}> and <@{order.admin_id}>, you can discuss the work here.",
    ]
    if order.deadline:
        lines.append(f"⏰ Deadline: {_timestamp(order.deadline, 'F')}")
    return "\n".join(lines)


def build_history_embed(order: Order) -> discord.Embed:
    embed = discord.Embed(
        title=f"✅ Order {order.order_id} completed",
        colour=discord.Colour.green(),
        timestamp=order.completed_at or datetime.now(timezone.utc),
    )
    embed.add_field(name="Client", value=order.client_name, inline=True)
    embed.add_field(name="Compensation", value=order.compensation, inline=True)
    embed.add_field(name="Level", value=level_label(order.level), inline=True)
    if order.assigned_to:
        embed.add_field(name="Coder", value=f"<@{order.assigned_to}>", inline=True)
    embed.add_field(name="Admin", value=f"<@{order.admin_id}>", inline=True)
    embed.add_field(
        name="Project duration",
        value=format_duration(order.assigned_at, order.completed_at),
        inline=True,
    )
    return embed


# Ratings -------------------------------------------------------------
def build_rating_prompt(order: Order) -> discord.Embed:
    return discord.Embed(
        title="⭐ Rate this project",
        description=(
            f"Administrators: rate <@{order.assigned_to}>'s work on order `{order.order_id}`.\n"
            "0 marks the project as failed."
        ),
        colour=discord.Colour.gold(),
    )


def build_rating_view(order: Order) -> ComponentView:
    view = ComponentView()
    for rating in range(0, 6):
        style = discord.ButtonStyle.danger if rating == 0 else discord.ButtonStyle.secondary
        label = "0 · Failed" if rating == 0 else "⭐" * rating
        view.add_item(
            _button(
                label,
                encode(RateProject(order.order_id, order.assigned_to or "", rating)),
                style,
                row=0 if rating < 3 else 1,
            )
        )
    return view


def build_rating_result_embed(outcome: RatingOutcome) -> discord.Embed:
    result = outcome.result
    coder = outcome.coder
    embed = discord.Embed(
        title=RATING_RESULT_TITLES[result.status],
        colour=discord.Colour.red() if result.status in (RatingStatus.BANNED, RatingStatus.LEVEL_DOWN) else discord.Colour.green(),
    )
    embed.add_field(name="Coder", value=f"<@{coder.user_id}>", inline=True)
    embed.add_field(name="Rating", value=f"{outcome.record.rating}/5", inline=True)
    embed.add_field(name="XP earned", value=f"+{result.xp_earned}", inline=True)
    embed.add_field(name="Level", value=f"{result.level_before} → {result.new_level}", inline=True)
    embed.add_field(name="Total XP", value=f"{result.new_xp:,}", inline=True)
    if result.status is RatingStatus.BANNED:
        embed.description = "This coder is permanently excluded from the progression system."
    else:
        embed.add_field(name="Progress", value=progress_bar(result.progress_percentage), inline=False)
    embed.set_footer(text=f"Order ID: {outcome.order.order_id}")
    return embed


# Reports -------------------------------------------------------------
def build_list_embed(title: str, lines: Sequence[str], *, empty: str = "Nothing to show.") -> discord.Embed:
    embed = discord.Embed(
        title=title,
        description="\n".join(lines)[:4000] if lines else empty,
        colour=discord.Colour.blurple(),
        timestamp=datetime.now(timezone.utc),
    )
    return embed


def build_profile_embed(profile: CoderProfile, display_name: str) -> discord.Embed:
    coder = profile.coder
    embed = discord.Embed(
        title=f"👤 {display_name}",
        colour=discord.Colour.red() if coder.banned else discord.Colour.blurple(),
    )
    embed.add_field(name="Level", value=level_label(coder.level), inline=True)
    embed.add_field(name="XP", value=f"{coder.xp:,}", inline=True)
    embed.add_field(name="Completed orders", value=str(coder.completed_orders), inline=True)
    if coder.banned:
        embed.add_field(name="Status", value="⛔ Banned from progression", inline=False)
    else:
        target = f" (next level at {profile.next_level.min_xp:,} XP)" if profile.next_level else ""
        embed.add_field(name="Progress", value=progress_bar(profile.progress) + target, inline=False)
    if coder.active_order_id:
        embed.add_field(name="Active order", value=f"`{coder.active_order_id}`", inline=False)
    if profile.recent:
        lines = [
            f"`{item.project_id}` · {item.rating}/5 · +{item.xp_earned} XP · {item.status.value}"
            for item in profile.recent
        ]
        embed.add_field(name="Recent ratings", value="\n".join(lines), inline=False)
    return embed


def build_leaderboard_embed(coders: Sequence[Coder]) -> discord.Embed:
    lines = [
        f"**{index}.** <@{coder.user_id}> · {level_label(coder.level)} · {coder.xp:,} XP"
        for index, coder in enumerate(coders, start=1)
    ]
    return build_list_embed("🏆 Coder leaderboard", lines, empty="No coders ranked yet.")


def deadline_reminder(order: Order) -> str:
    due = _timestamp(order.deadline, "R") if order.deadline else "soon"
    who = f"<@{order.assigned_to}>" if order.assigned_to else f"<@{order.admin_id}>"
    return f"⏰ {who} order `{order.order_id}` ({STATUS_LABELS[order.status]}) is due {due}."


__all__ = [
    "ComponentView",
    "InitialOrderModal",
    "ConfirmationModal",
    "build_order_embed",
    "build_order_view",
    "embed_mentions_order",
    "build_date_view",
    "date_prompt",
    "build_category_view",
    "category_prompt",
    "build_roles_view",
    "build_level_view",
    "build_preview_embed",
    "expiry_text",
    "build_preview_view",
    "build_expired_embed",
    "build_workspace_embed",
    "build_workspace_view",
    "welcome_message",
    "build_history_embed",
    "build_rating_prompt",
    "build_rating_view",
    "build_rating_result_embed",
    "build_list_embed",
    "build_profile_embed",
    "build_leaderboard_embed",
    "deadline_reminder",
]
