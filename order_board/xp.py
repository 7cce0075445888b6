"""XP awards, level thresholds and rating evaluation.

Everything here is pure: the rating service feeds the current coder record in
and persists whatever :func:`evaluate_rating` returns.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import RatingStatus

MIN_LEVEL = 1
MAX_LEVEL = 6
MAX_RATING = 5

_BASE_REWARD = 20
_LEVEL_MULTIPLIER = 3

# XP_REWARDS[level][rating]; each level scales the previous row by 3.
XP_REWARDS: Dict[int, Tuple[int, ...]] = {
    level: tuple(
        _BASE_REWARD * _LEVEL_MULTIPLIER ** (level - 1) * rating
        for rating in range(MAX_RATING + 1)
    )
    for level in range(MIN_LEVEL, MAX_LEVEL + 1)
}


@dataclass(frozen=True)
class LevelThreshold:
    level: int
    min_xp: int
    max_xp: Optional[int]
    projects_required: Optional[int]


LEVEL_THRESHOLDS: Dict[int, LevelThreshold] = {
    1: LevelThreshold(1, 0, 100, 1),
    2: LevelThreshold(2, 100, 700, 2),
    3: LevelThreshold(3, 700, 5200, 5),
    4: LevelThreshold(4, 5200, 32200, 10),
    5: LevelThreshold(5, 32200, 194200, 20),
    6: LevelThreshold(6, 194200, None, None),
}

BAN_LEVEL_CEILING = 2


@dataclass(frozen=True)
class RatingResult:
    status: RatingStatus
    xp_earned: int
    new_level: int
    new_xp: int
    progress_percentage: int
    banned: bool
    completed_projects: int
    level_before: int


def clamp_level(level: int) -> int:
    return max(MIN_LEVEL, min(MAX_LEVEL, int(level)))


def clamp_rating(rating: int) -> int:
    return max(0, min(MAX_RATING, int(rating)))


def calculate_xp(level: int, rating: int) -> int:
    """XP awarded for a project of ``level`` rated ``rating``."""

    return XP_REWARDS[clamp_level(level)][clamp_rating(rating)]


def level_for(xp: int, completed_projects: int) -> int:
    """Highest level reachable by climbing while each XP floor and project requirement holds."""

    reached = MIN_LEVEL
    for level in sorted(LEVEL_THRESHOLDS):
        threshold = LEVEL_THRESHOLDS[level]
        if xp < threshold.min_xp:
            break
        if threshold.projects_required is not None and completed_projects < threshold.projects_required:
            break
        reached = level
    return reached


def next_threshold(level: int) -> Optional[LevelThreshold]:
    return LEVEL_THRESHOLDS.get(clamp_level(level) + 1)


def progress_percentage(xp: int, level: int) -> int:
    """Percentage of the XP span between ``level`` and the next level."""

    current = LEVEL_THRESHOLDS[clamp_level(level)]
    upcoming = next_threshold(level)
    if upcoming is None:
        return 100
    span = upcoming.min_xp - current.min_xp
    if span <= 0:
        return 100
    pct = round((xp - current.min_xp) / span * 100)
    return max(0, min(100, pct))


def progress_bar(percentage: int, width: int = 10) -> str:
    filled = max(0, min(width, round(percentage / 100 * width)))
    return "█" * filled + "░" * (width - filled) + f" {percentage}%"


def evaluate_rating(
    current_xp: int,
    current_level: int,
    completed_projects: int,
    banned: bool,
    project_level: int,
    rating: int,
) -> RatingResult:
    """Compute the coder progression that results from one rating."""

    project_level = clamp_level(project_level)
    rating = clamp_rating(rating)
    current_level = clamp_level(current_level)

    if banned:
        return RatingResult(
            status=RatingStatus.BANNED,
            xp_earned=0,
            new_level=current_level,
            new_xp=current_xp,
            progress_percentage=progress_percentage(current_xp, current_level),
            banned=True,
            completed_projects=completed_projects,
            level_before=current_level,
        )

    completed = completed_projects + 1

    if rating == 0:
        if current_level <= BAN_LEVEL_CEILING:
            return RatingResult(
                status=RatingStatus.BANNED,
                xp_earned=0,
                new_level=current_level,
                new_xp=current_xp,
                progress_percentage=progress_percentage(current_xp, current_level),
                banned=True,
                completed_projects=completed,
                level_before=current_level,
            )
        # Soft demotion: the XP total is kept as is.
        demoted = current_level - 1
        return RatingResult(
            status=RatingStatus.LEVEL_DOWN,
            xp_earned=0,
            new_level=demoted,
            new_xp=current_xp,
            progress_percentage=progress_percentage(current_xp, demoted),
            banned=False,
            completed_projects=completed,
            level_before=current_level,
        )

    earned = calculate_xp(project_level, rating)
    new_xp = current_xp + earned
    new_level = max(current_level, level_for(new_xp, completed))
    status = RatingStatus.LEVEL_UP if new_level > current_level else RatingStatus.SUCCESS
    return RatingResult(
        status=status,
        xp_earned=earned,
        new_level=new_level,
        new_xp=new_xp,
        progress_percentage=progress_percentage(new_xp, new_level),
        banned=False,
        completed_projects=completed,
        level_before=current_level,
    )


__all__ = [
    "XP_REWARDS",
    "LEVEL_THRESHOLDS",
    "LevelThreshold",
    "RatingResult",
    "calculate_xp",
    "level_for",
    "next_threshold",
    "progress_percentage",
    "progress_bar",
    "evaluate_rating",
]
