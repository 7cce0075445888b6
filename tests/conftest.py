"""Shared fixtures for the order board test-suite."""
from __future__ import annotations

import pytest

import order_board.telemetry as telemetry_module
from order_board.config import Settings
from order_board.state import OrderStore
from order_board.telemetry import TelemetryCollector

ROLE_KEYWORDS = {
    "dev_language": ["python", "javascript", "java", "rust"],
    "front_end": ["react", "vue", "javascript"],
    "back_end": ["django", "node", "api"],
    "database": ["postgres", "mongo", "sql"],
    "ui": ["figma", "design"],
}


@pytest.fixture(autouse=True)
def isolated_telemetry(tmp_path, monkeypatch):
    """Point the telemetry singleton at a throwaway database."""

    collector = TelemetryCollector(tmp_path / "telemetry.db")
    monkeypatch.setattr(telemetry_module, "_telemetry", collector)
    return collector


@pytest.fixture
def settings() -> Settings:
    return Settings.from_dict(
        {
            "channels": {
                "create": 100,
                "default_publish": 999,
                "history": 500,
                "level_up": 600,
                "projects_category": 700,
                "levels": {1: 301, 3: 303},
            },
            "roles": {"admin_names": ["Admin"], "super_admin_id": 42, "verifier_id": 43},
            "role_categories": ROLE_KEYWORDS,
            "wizard": {"confirmation_timeout_seconds": 300},
            "verification": {"cooldown_hours": 24},
        }
    )


@pytest.fixture
def store(tmp_path) -> OrderStore:
    return OrderStore(tmp_path / "orders.db")
