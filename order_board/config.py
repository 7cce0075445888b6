"""Configuration loading utilities for the order board."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"

ROLE_CATEGORY_ORDER = ("dev_language", "front_end", "back_end", "database", "ui", "other")


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, "", 0):
        return None
    return int(value)


def _int_list(values: Any) -> List[int]:
    return [int(v) for v in (values or []) if v not in (None, "")]


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    create_channel_id: Optional[int]
    default_channel_id: Optional[int]
    history_channel_id: Optional[int]
    level_up_channel_id: Optional[int]
    projects_category_id: Optional[int]
    level_channels: Dict[int, int]
    admin_role_names: List[str]
    admin_role_ids: List[int]
    super_admin_role_id: Optional[int]
    verifier_role_id: Optional[int]
    excluded_role_ids: List[int]
    role_categories: Dict[str, List[str]]
    confirmation_timeout_seconds: float
    verification_cooldown_hours: float
    deadline_window_hours: float
    deadline_check_interval_minutes: float
    deadline_reminder_gap_hours: float
    announcement_scan_limit: int

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        channels = data.get("channels", {}) or {}
        roles = data.get("roles", {}) or {}
        wizard_cfg = data.get("wizard", {}) or {}
        verification_cfg = data.get("verification", {}) or {}
        deadline_cfg = data.get("deadlines", {}) or {}
        announcement_cfg = data.get("announcements", {}) or {}
        level_channels = {
            int(level): int(channel)
            for level, channel in (channels.get("levels") or {}).items()
            if channel
        }
        categories = {
            name: [str(keyword).lower() for keyword in (keywords or [])]
            for name, keywords in (data.get("role_categories") or {}).items()
        }
        for name in ROLE_CATEGORY_ORDER:
            categories.setdefault(name, [])
        return Settings(
            create_channel_id=_optional_int(channels.get("create")),
            default_channel_id=_optional_int(channels.get("default_publish")),
            history_channel_id=_optional_int(channels.get("history")),
            level_up_channel_id=_optional_int(channels.get("level_up")),
            projects_category_id=_optional_int(channels.get("projects_category")),
            level_channels=level_channels,
            admin_role_names=list(roles.get("admin_names", ["Admin", "Moderator", "Opportunity Curator"])),
            admin_role_ids=_int_list(roles.get("admin_ids")),
            super_admin_role_id=_optional_int(roles.get("super_admin_id")),
            verifier_role_id=_optional_int(roles.get("verifier_id")),
            excluded_role_ids=_int_list(roles.get("excluded_ids")),
            role_categories=categories,
            confirmation_timeout_seconds=float(wizard_cfg.get("confirmation_timeout_seconds", 300)),
            verification_cooldown_hours=float(verification_cfg.get("cooldown_hours", 24)),
            deadline_window_hours=float(deadline_cfg.get("window_hours", 48)),
            deadline_check_interval_minutes=float(deadline_cfg.get("check_interval_minutes", 60)),
            deadline_reminder_gap_hours=float(deadline_cfg.get("reminder_gap_hours", 24)),
            announcement_scan_limit=int(announcement_cfg.get("scan_limit", 100)),
        )


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.environ.get("ORDER_BOARD_SETTINGS")
        self._path = path or (Path(env_path) if env_path else DEFAULT_SETTINGS_PATH)
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["Settings", "SettingsLoader", "get_settings", "ROLE_CATEGORY_ORDER"]
