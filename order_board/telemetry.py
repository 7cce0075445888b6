"""Usage metrics for the order board.

Events are buffered in memory and written to a small sqlite database, either
in batches or when a report is requested. The collector is a process-wide
singleton obtained through :func:`get_telemetry`.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS metrics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp REAL NOT NULL,
        metric_type TEXT NOT NULL,
        name TEXT NOT NULL,
        value REAL NOT NULL,
        tags TEXT,
        metadata TEXT
    )""",
    "CREATE INDEX IF NOT EXISTS idx_metrics_kind ON metrics(metric_type, name, timestamp)",
)

BUFFER_LIMIT = 100
FLUSH_INTERVAL_SECONDS = 60


class MetricType(Enum):
    COMMAND_USAGE = "command_usage"
    ERROR_RATE = "error_rate"
    PERFORMANCE = "performance"
    ORDER_STATE = "order_state"
    SESSION_EVENT = "session_event"
    RATING = "rating"


@dataclass
class MetricEvent:
    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


def _since(hours: float) -> float:
    return time.time() - hours * 3600


class TelemetryCollector:
    """Buffers metric events and persists them to sqlite."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or Path("telemetry.db")
        self._metrics_buffer: List[MetricEvent] = []
        self._start_time = time.time()
        self._last_flush = self._start_time
        with closing(self._connect()) as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    # Recording ---------------------------------------------------------
    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self._metrics_buffer.append(
            MetricEvent(time.time(), metric_type, name, value, dict(tags or {}), dict(metadata or {}))
        )
        overdue = time.time() - self._last_flush > FLUSH_INTERVAL_SECONDS
        if len(self._metrics_buffer) >= BUFFER_LIMIT or overdue:
            self.flush()

    def track_command(
        self,
        command_name: str,
        user_id: str,
        guild_id: str,
        success: bool = True,
        duration_ms: Optional[float] = None,
        channel_id: Optional[str] = None,
    ):
        """One slash command invocation."""
        tags = {"user_id": user_id, "guild_id": guild_id, "success": str(success)}
        if channel_id:
            tags["channel_id"] = channel_id
        metadata = {"duration_ms": duration_ms} if duration_ms else None
        self.record(MetricType.COMMAND_USAGE, command_name, 1.0, tags, metadata)

    def track_error(
        self,
        error_type: str,
        command: Optional[str] = None,
        user_id: Optional[str] = None,
        error_details: Optional[str] = None,
    ):
        tags = {key: value for key, value in (("command", command), ("user_id", user_id)) if value}
        metadata = {"error_details": error_details} if error_details else None
        self.record(MetricType.ERROR_RATE, error_type, 1.0, tags, metadata)

    def track_performance(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.record(MetricType.PERFORMANCE, operation, duration_ms, tags)

    def track_order_transition(
        self,
        order_id: str,
        status: str,
        *,
        actor_id: Optional[str] = None,
        level: Optional[int] = None,
    ):
        """An order entering ``status``; the metric name is the status."""
        tags = {"order_id": order_id}
        if actor_id:
            tags["actor_id"] = actor_id
        self.record(MetricType.ORDER_STATE, status, 1.0, tags, {"level": level} if level is not None else None)

    def track_session_event(self, event: str, user_id: str, step: Optional[str] = None):
        """Wizard session start, publish, cancel, expire or error."""
        tags = {"user_id": user_id}
        if step:
            tags["step"] = step
        self.record(MetricType.SESSION_EVENT, event, 1.0, tags)

    def track_rating(self, coder_id: str, status: str, rating: int, xp_earned: int):
        self.record(MetricType.RATING, status, float(rating), {"coder_id": coder_id}, {"xp_earned": xp_earned})

    def flush(self):
        """Write buffered events; on a database error they stay buffered."""
        if not self._metrics_buffer:
            return
        rows = [
            (
                event.timestamp,
                event.metric_type.value,
                event.name,
                event.value,
                json.dumps(event.tags),
                json.dumps(event.metadata),
            )
            for event in self._metrics_buffer
        ]
        try:
            with closing(self._connect()) as conn:
                conn.executemany(
                    "INSERT INTO metrics (timestamp, metric_type, name, value, tags, metadata)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    rows,
                )
                conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to flush %d metrics: %s", len(rows), exc)
            return
        logger.debug("Flushed %d metrics", len(rows))
        self._metrics_buffer.clear()
        self._last_flush = time.time()

    # Queries -----------------------------------------------------------
    def _count_by_name(self, metric_type: MetricType, since: float) -> Dict[str, int]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """SELECT name, COUNT(*) FROM metrics
                       WHERE metric_type = ? AND timestamp >= ?
                       GROUP BY name
                       ORDER BY COUNT(*) DESC, name""",
                (metric_type.value, since),
            ).fetchall()
        return {name: count for name, count in rows}

    def get_command_stats(
        self,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """Usage count, success rate and distinct users per command."""
        clauses = ["metric_type = ?"]
        params: List[Any] = [MetricType.COMMAND_USAGE.value]
        if start_time:
            clauses.append("timestamp >= ?")
            params.append(start_time)
        if end_time:
            clauses.append("timestamp <= ?")
            params.append(end_time)
        query = f"""SELECT name,
                           COUNT(*),
                           AVG(json_extract(tags, '$.success') = 'True'),
                           COUNT(DISTINCT json_extract(tags, '$.user_id'))
                      FROM metrics
                     WHERE {' AND '.join(clauses)}
                     GROUP BY name"""
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return {
            name: {"usage_count": usage, "success_rate": rate, "unique_users": users}
            for name, usage, rate, users in rows
        }

    def get_error_summary(self, hours: int = 24) -> Dict[str, int]:
        return self._count_by_name(MetricType.ERROR_RATE, _since(hours))

    def get_order_transition_summary(self, hours: int = 24 * 7) -> Dict[str, int]:
        return self._count_by_name(MetricType.ORDER_STATE, _since(hours))

    def generate_report(self) -> Dict[str, Any]:
        """Summary shown by the admin telemetry command."""
        self.flush()
        return {
            "uptime_seconds": time.time() - self._start_time,
            "commands": self.get_command_stats(start_time=_since(24)),
            "errors": self.get_error_summary(),
            "orders": self.get_order_transition_summary(),
        }

    def cleanup_old_data(self, days_to_keep: int = 30) -> int:
        with closing(self._connect()) as conn:
            deleted = conn.execute(
                "DELETE FROM metrics WHERE timestamp < ?",
                (_since(days_to_keep * 24),),
            ).rowcount
            conn.commit()
        logger.info("Removed %d metric events older than %d days", deleted, days_to_keep)
        return deleted


_telemetry: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    global _telemetry
    if _telemetry is None:
        db_path = os.environ.get("ORDER_BOARD_TELEMETRY_DB")
        _telemetry = TelemetryCollector(Path(db_path) if db_path else None)
    return _telemetry


@contextmanager
def track_duration(operation: str, tags: Optional[Dict[str, str]] = None) -> Iterator[None]:
    """Record how long the block took, plus an error metric if it raised."""
    telemetry = get_telemetry()
    started = time.perf_counter()
    try:
        yield
    except Exception as exc:
        telemetry.track_error(type(exc).__name__, command=operation, error_details=str(exc))
        raise
    finally:
        telemetry.track_performance(operation, (time.perf_counter() - started) * 1000, tags)


__all__ = ["MetricType", "MetricEvent", "TelemetryCollector", "get_telemetry", "track_duration"]
