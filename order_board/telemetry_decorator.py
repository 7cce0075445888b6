"""Slash command telemetry decorator."""
from __future__ import annotations

import functools
import time
from typing import Any, Callable, Tuple

import discord

from .telemetry import get_telemetry


def _origin(interaction: discord.Interaction) -> Tuple[str, str, str]:
    guild_id = getattr(interaction, "guild_id", None)
    channel_id = getattr(interaction, "channel_id", None)
    return (
        str(interaction.user.id),
        str(guild_id) if guild_id else "dm",
        str(channel_id) if channel_id is not None else "dm",
    )


def track_command(func: Callable) -> Callable:
    """Record usage, latency and failures of an app command callback."""

    @functools.wraps(func)
    async def wrapper(interaction: discord.Interaction, *args, **kwargs) -> Any:
        telemetry = get_telemetry()
        user_id, guild_id, channel_id = _origin(interaction)
        started = time.perf_counter()
        success = False
        try:
            result = await func(interaction, *args, **kwargs)
        except Exception as exc:
            telemetry.track_error(type(exc).__name__, command=func.__name__, user_id=user_id, error_details=str(exc))
            raise
        else:
            success = True
            return result
        finally:
            telemetry.track_command(
                func.__name__,
                user_id,
                guild_id,
                success=success,
                duration_ms=(time.perf_counter() - started) * 1000,
                channel_id=channel_id,
            )

    return wrapper
