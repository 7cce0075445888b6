"""Discord channel routing.

``ChannelRouter`` resolves which channels receive automated posts. Values come
from the settings file and may be overridden per deployment through
``ORDER_BOARD_CHANNEL_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from ...config import Settings

logger = logging.getLogger(__name__)

LEVEL_RANGE = range(1, 7)


def _parse(env_key: str, fallback: Optional[int]) -> Optional[int]:
    value = os.environ.get(env_key)
    if not value:
        return fallback
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid channel id %s for %s", value, env_key)
        return fallback


@dataclass(frozen=True)
class ChannelRouter:
    """Configures which Discord channels receive automated posts."""

    create: Optional[int]
    default: Optional[int]
    history: Optional[int]
    level_up: Optional[int]
    projects_category: Optional[int]
    levels: Dict[int, int] = field(default_factory=dict)

    @staticmethod
    def from_env(settings: Settings) -> "ChannelRouter":
        levels: Dict[int, int] = {}
        for level in LEVEL_RANGE:
            channel_id = _parse(f"ORDER_BOARD_CHANNEL_LEVEL_{level}", settings.level_channels.get(level))
            if channel_id is not None:
                levels[level] = channel_id
        return ChannelRouter(
            create=_parse("ORDER_BOARD_CHANNEL_CREATE", settings.create_channel_id),
            default=_parse("ORDER_BOARD_CHANNEL_DEFAULT", settings.default_channel_id),
            history=_parse("ORDER_BOARD_CHANNEL_HISTORY", settings.history_channel_id),
            level_up=_parse("ORDER_BOARD_CHANNEL_LEVEL_UP", settings.level_up_channel_id),
            projects_category=_parse("ORDER_BOARD_CATEGORY_PROJECTS", settings.projects_category_id),
            levels=levels,
        )

    def announcement_channels(self, level: int) -> list[int]:
        """Channels an announcement for ``level`` may live in, most specific first."""

        candidates = []
        for channel_id in (self.levels.get(level), self.default):
            if channel_id is not None and channel_id not in candidates:
                candidates.append(channel_id)
        return candidates


__all__ = ["ChannelRouter"]
