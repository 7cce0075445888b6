"""Persistent record store for orders, coders and ratings."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import Coder, Order, OrderStatus, ProjectRating, RatingStatus, RequiredRole

logger = logging.getLogger(__name__)

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    order_id TEXT PRIMARY KEY,
    admin_id TEXT NOT NULL,
    client_name TEXT NOT NULL,
    compensation TEXT NOT NULL,
    description TEXT NOT NULL,
    status TEXT NOT NULL,
    level INTEGER NOT NULL,
    assigned_to TEXT,
    deadline TEXT,
    required_roles TEXT NOT NULL DEFAULT '[]',
    tags TEXT NOT NULL DEFAULT '[]',
    message_id INTEGER,
    channel_id INTEGER,
    private_channel_id INTEGER,
    last_verification_request TEXT,
    last_deadline_reminder TEXT,
    created_at TEXT NOT NULL,
    assigned_at TEXT,
    completed_at TEXT,
    cancelled_at TEXT,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_orders_status_created
    ON orders (status, created_at);
CREATE TABLE IF NOT EXISTS coders (
    user_id TEXT PRIMARY KEY,
    active_order_id TEXT,
    completed_orders INTEGER NOT NULL DEFAULT 0,
    xp INTEGER NOT NULL DEFAULT 0,
    level INTEGER NOT NULL DEFAULT 1,
    banned INTEGER NOT NULL DEFAULT 0,
    last_active TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_coders_active_order
    ON coders (active_order_id) WHERE active_order_id IS NOT NULL;
CREATE TABLE IF NOT EXISTS project_ratings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT NOT NULL,
    coder_id TEXT NOT NULL,
    admin_id TEXT NOT NULL,
    rating INTEGER NOT NULL,
    xp_earned INTEGER NOT NULL,
    level_before INTEGER NOT NULL,
    level_after INTEGER NOT NULL,
    status TEXT NOT NULL,
    rated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_project_ratings_coder
    ON project_ratings (coder_id, rated_at);
"""

# Columns callers may set through update_order_status.
_MUTABLE_ORDER_FIELDS = {
    "assigned_to",
    "message_id",
    "channel_id",
    "private_channel_id",
    "last_verification_request",
    "last_deadline_reminder",
    "assigned_at",
    "completed_at",
    "cancelled_at",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _column_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, OrderStatus):
        return value.value
    return value


def _order_from_row(row: sqlite3.Row) -> Order:
    roles = [
        RequiredRole(name=item["name"], role_id=item.get("role_id"))
        for item in json.loads(row["required_roles"] or "[]")
    ]
    return Order(
        order_id=row["order_id"],
        admin_id=row["admin_id"],
        client_name=row["client_name"],
        compensation=row["compensation"],
        description=row["description"],
        level=int(row["level"]),
        status=OrderStatus(row["status"]),
        assigned_to=row["assigned_to"],
        deadline=date.fromisoformat(row["deadline"]) if row["deadline"] else None,
        required_roles=roles,
        tags=list(json.loads(row["tags"] or "[]")),
        message_id=row["message_id"],
        channel_id=row["channel_id"],
        private_channel_id=row["private_channel_id"],
        last_verification_request=_parse_dt(row["last_verification_request"]),
        last_deadline_reminder=_parse_dt(row["last_deadline_reminder"]),
        created_at=_parse_dt(row["created_at"]),
        assigned_at=_parse_dt(row["assigned_at"]),
        completed_at=_parse_dt(row["completed_at"]),
        cancelled_at=_parse_dt(row["cancelled_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _coder_from_row(row: sqlite3.Row) -> Coder:
    return Coder(
        user_id=row["user_id"],
        active_order_id=row["active_order_id"],
        completed_orders=int(row["completed_orders"]),
        xp=int(row["xp"]),
        level=int(row["level"]),
        banned=bool(row["banned"]),
        last_active=_parse_dt(row["last_active"]),
    )


def _rating_from_row(row: sqlite3.Row) -> ProjectRating:
    return ProjectRating(
        project_id=row["project_id"],
        coder_id=row["coder_id"],
        admin_id=row["admin_id"],
        rating=int(row["rating"]),
        xp_earned=int(row["xp_earned"]),
        level_before=int(row["level_before"]),
        level_after=int(row["level_after"]),
        status=RatingStatus(row["status"]),
        rated_at=datetime.fromisoformat(row["rated_at"]),
    )


class OrderStore:
    """High level interface over the sqlite record store.

    Every public method opens its own connection, so the store can be shared
    between the event loop and the scheduler thread.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with closing(self._connect()) as conn:
            conn.executescript(_DB_SCHEMA)
            conn.commit()

    # Orders ------------------------------------------------------------
    def create_order(self, order: Order) -> Order:
        now = _now()
        order.created_at = order.created_at or now
        order.updated_at = now
        with closing(self._connect()) as conn:
            conn.execute(
                """INSERT INTO orders
                       (order_id, admin_id, client_name, compensation, description, status, level,
                        assigned_to, deadline, required_roles, tags, message_id, channel_id,
                        private_channel_id, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    order.order_id,
                    order.admin_id,
                    order.client_name,
                    order.compensation,
                    order.description,
                    order.status.value,
                    order.level,
                    order.assigned_to,
                    order.deadline.isoformat() if order.deadline else None,
                    json.dumps(
                        [{"name": role.name, "role_id": role.role_id} for role in order.required_roles]
                    ),
                    json.dumps(order.tags),
                    order.message_id,
                    order.channel_id,
                    order.private_channel_id,
                    order.created_at.isoformat(),
                    order.updated_at.isoformat(),
                ),
            )
            conn.commit()
        logger.info("Created order %s (level %s) for admin %s", order.order_id, order.level, order.admin_id)
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM orders WHERE order_id = ?", (order_id,)).fetchone()
        return _order_from_row(row) if row else None

    def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        expected: Optional[Iterable[OrderStatus]] = None,
        **fields: Any,
    ) -> Optional[Order]:
        """Set ``status`` (and extra columns) if the order is in an ``expected`` status.

        Returns the updated order, or ``None`` when the order is missing or the
        status condition no longer holds.
        """

        with closing(self._connect()) as conn:
            changed = self._update_order(conn, order_id, status=status, expected=expected, fields=fields)
            conn.commit()
        return self.get_order(order_id) if changed else None

    def _update_order(
        self,
        conn: sqlite3.Connection,
        order_id: str,
        *,
        status: Optional[OrderStatus] = None,
        expected: Optional[Iterable[OrderStatus]] = None,
        fields: Dict[str, Any],
    ) -> bool:
        unknown = set(fields) - _MUTABLE_ORDER_FIELDS
        if unknown:
            raise KeyError(f"Unsupported order fields: {sorted(unknown)}")
        assignments = ["updated_at = ?"]
        params: List[Any] = [_now().isoformat()]
        if status is not None:
            assignments.append("status = ?")
            params.append(status.value)
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(_column_value(value))
        query = f"UPDATE orders SET {', '.join(assignments)} WHERE order_id = ?"
        params.append(order_id)
        if expected is not None:
            expected_values = [OrderStatus(item).value for item in expected]
            query += f" AND status IN ({', '.join('?' for _ in expected_values)})"
            params.extend(expected_values)
        cursor = conn.execute(query, params)
        return cursor.rowcount == 1

    def update_order_fields(self, order_id: str, **fields: Any) -> Optional[Order]:
        with closing(self._connect()) as conn:
            changed = self._update_order(conn, order_id, fields=fields)
            conn.commit()
        return self.get_order(order_id) if changed else None

    def set_announcement(self, order_id: str, message_id: int, channel_id: int) -> Optional[Order]:
        return self.update_order_fields(order_id, message_id=message_id, channel_id=channel_id)

    def set_private_channel(self, order_id: str, channel_id: int) -> Optional[Order]:
        return self.update_order_fields(order_id, private_channel_id=channel_id)

    def set_verification_request(self, order_id: str, when: Optional[datetime]) -> Optional[Order]:
        return self.update_order_fields(order_id, last_verification_request=when)

    def mark_deadline_reminder(self, order_id: str, when: datetime) -> Optional[Order]:
        return self.update_order_fields(order_id, last_deadline_reminder=when)

    def query_orders(
        self,
        status: Optional[OrderStatus] = None,
        *,
        statuses: Optional[Iterable[OrderStatus]] = None,
        limit: Optional[int] = None,
    ) -> List[Order]:
        query = "SELECT * FROM orders"
        params: List[Any] = []
        wanted = [status] if status is not None else list(statuses or [])
        if wanted:
            query += f" WHERE status IN ({', '.join('?' for _ in wanted)})"
            params.extend(OrderStatus(item).value for item in wanted)
        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_order_from_row(row) for row in rows]

    def assign_order(self, order_id: str, coder_id: str, now: Optional[datetime] = None) -> Optional[Order]:
        """Atomically move an OPEN order to ASSIGNED and claim the coder's slot.

        Both conditional updates run in one transaction; if either condition
        fails nothing is written and ``None`` is returned.
        """

        now = now or _now()
        with closing(self._connect()) as conn:
            cursor = conn.execute(
                """UPDATE orders
                       SET status = ?, assigned_to = ?, assigned_at = ?, updated_at = ?
                       WHERE order_id = ? AND status = ?""",
                (
                    OrderStatus.ASSIGNED.value,
                    coder_id,
                    now.isoformat(),
                    now.isoformat(),
                    order_id,
                    OrderStatus.OPEN.value,
                ),
            )
            if cursor.rowcount != 1:
                conn.rollback()
                return None
            conn.execute(
                "INSERT OR IGNORE INTO coders (user_id, last_active) VALUES (?, ?)",
                (coder_id, now.isoformat()),
            )
            cursor = conn.execute(
                """UPDATE coders
                       SET active_order_id = ?, last_active = ?
                       WHERE user_id = ? AND active_order_id IS NULL""",
                (order_id, now.isoformat(), coder_id),
            )
            if cursor.rowcount != 1:
                conn.rollback()
                return None
            conn.commit()
        logger.info("Order %s assigned to %s", order_id, coder_id)
        return self.get_order(order_id)

    def _release_coder(
        self,
        conn: sqlite3.Connection,
        coder_id: Optional[str],
        order_id: str,
        now: datetime,
        *,
        increment: bool = False,
    ) -> None:
        if not coder_id:
            return
        conn.execute(
            """UPDATE coders
                   SET completed_orders = completed_orders + ?,
                       last_active = ?,
                       active_order_id = CASE WHEN active_order_id = ? THEN NULL ELSE active_order_id END
                   WHERE user_id = ?""",
            (1 if increment else 0, now.isoformat(), order_id, coder_id),
        )

    def complete_order(
        self,
        order_id: str,
        *,
        increment_coder: bool,
        now: Optional[datetime] = None,
    ) -> Optional[Order]:
        """ASSIGNED -> COMPLETED, freeing the assigned coder in the same transaction."""

        now = now or _now()
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT assigned_to FROM orders WHERE order_id = ?", (order_id,)).fetchone()
            changed = self._update_order(
                conn,
                order_id,
                status=OrderStatus.COMPLETED,
                expected=(OrderStatus.ASSIGNED,),
                fields={"completed_at": now},
            )
            if not changed:
                conn.rollback()
                return None
            self._release_coder(conn, row["assigned_to"], order_id, now, increment=increment_coder)
            conn.commit()
        logger.info("Order %s completed", order_id)
        return self.get_order(order_id)

    def cancel_order(self, order_id: str, now: Optional[datetime] = None) -> Optional[Order]:
        """OPEN/ASSIGNED -> CANCELLED, freeing any assigned coder."""

        now = now or _now()
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT assigned_to FROM orders WHERE order_id = ?", (order_id,)).fetchone()
            changed = self._update_order(
                conn,
                order_id,
                status=OrderStatus.CANCELLED,
                expected=(OrderStatus.OPEN, OrderStatus.ASSIGNED),
                fields={"cancelled_at": now},
            )
            if not changed:
                conn.rollback()
                return None
            self._release_coder(conn, row["assigned_to"], order_id, now)
            conn.commit()
        logger.info("Order %s cancelled", order_id)
        return self.get_order(order_id)

    # Coders ------------------------------------------------------------
    def get_coder(self, user_id: str) -> Optional[Coder]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM coders WHERE user_id = ?", (user_id,)).fetchone()
        return _coder_from_row(row) if row else None

    def _write_coder(self, conn: sqlite3.Connection, coder: Coder) -> None:
        conn.execute(
            "REPLACE INTO coders (user_id, active_order_id, completed_orders, xp, level, banned, last_active) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                coder.user_id,
                coder.active_order_id,
                coder.completed_orders,
                coder.xp,
                coder.level,
                1 if coder.banned else 0,
                _iso(coder.last_active),
            ),
        )

    def upsert_coder(self, coder: Coder) -> Coder:
        with closing(self._connect()) as conn:
            self._write_coder(conn, coder)
            conn.commit()
        return coder

    def leaderboard(self, limit: int = 10) -> List[Coder]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM coders WHERE banned = 0 ORDER BY level DESC, xp DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [_coder_from_row(row) for row in rows]

    # Ratings -----------------------------------------------------------
    def _write_rating(self, conn: sqlite3.Connection, record: ProjectRating) -> None:
        conn.execute(
            """INSERT INTO project_ratings
                   (project_id, coder_id, admin_id, rating, xp_earned, level_before, level_after, status, rated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.project_id,
                record.coder_id,
                record.admin_id,
                record.rating,
                record.xp_earned,
                record.level_before,
                record.level_after,
                record.status.value,
                record.rated_at.isoformat(),
            ),
        )

    def query_ratings(self, coder_id: str, limit: Optional[int] = None) -> List[ProjectRating]:
        query = "SELECT * FROM project_ratings WHERE coder_id = ? ORDER BY rated_at DESC, id DESC"
        params: List[Any] = [coder_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_rating_from_row(row) for row in rows]

    def count_ratings(self, coder_id: str) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM project_ratings WHERE coder_id = ?",
                (coder_id,),
            ).fetchone()
        return int(row[0] or 0)

    def has_rating(self, project_id: str, coder_id: str) -> bool:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT 1 FROM project_ratings WHERE project_id = ? AND coder_id = ? LIMIT 1",
                (project_id, coder_id),
            ).fetchone()
        return row is not None

    def record_rating(
        self,
        coder: Coder,
        record: ProjectRating,
        *,
        complete_order: bool = False,
    ) -> None:
        """Persist a coder update, its audit record and the implicit completion together."""

        with closing(self._connect()) as conn:
            self._write_coder(conn, coder)
            self._write_rating(conn, record)
            if complete_order:
                self._update_order(
                    conn,
                    record.project_id,
                    status=OrderStatus.COMPLETED,
                    expected=(OrderStatus.ASSIGNED,),
                    fields={"completed_at": record.rated_at},
                )
            conn.commit()

    # Reports -----------------------------------------------------------
    def order_history(self, limit: int = 5, status: Optional[OrderStatus] = None) -> List[Order]:
        statuses = [status] if status is not None else [OrderStatus.COMPLETED, OrderStatus.CANCELLED]
        placeholders = ", ".join("?" for _ in statuses)
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""SELECT * FROM orders
                        WHERE status IN ({placeholders})
                        ORDER BY COALESCE(completed_at, cancelled_at, updated_at) DESC
                        LIMIT ?""",
                [item.value for item in statuses] + [int(limit)],
            ).fetchall()
        return [_order_from_row(row) for row in rows]

    def order_stats(self) -> Dict[str, Any]:
        with closing(self._connect()) as conn:
            counts = {
                row["status"]: int(row["total"])
                for row in conn.execute("SELECT status, COUNT(*) AS total FROM orders GROUP BY status")
            }
            durations = conn.execute(
                """SELECT assigned_at, completed_at FROM orders
                       WHERE status = ? AND assigned_at IS NOT NULL AND completed_at IS NOT NULL""",
                (OrderStatus.COMPLETED.value,),
            ).fetchall()
        total = sum(counts.values())
        completed = counts.get(OrderStatus.COMPLETED.value, 0)
        cancelled = counts.get(OrderStatus.CANCELLED.value, 0)
        hours = [
            (datetime.fromisoformat(row["completed_at"]) - datetime.fromisoformat(row["assigned_at"])).total_seconds()
            / 3600
            for row in durations
        ]
        return {
            "total": total,
            "open": counts.get(OrderStatus.OPEN.value, 0),
            "assigned": counts.get(OrderStatus.ASSIGNED.value, 0),
            "completed": completed,
            "cancelled": cancelled,
            "completion_rate": (completed / total * 100) if total else 0.0,
            "cancellation_rate": (cancelled / total * 100) if total else 0.0,
            "average_completion_hours": (sum(hours) / len(hours)) if hours else None,
        }

    def coder_stats(self) -> Dict[str, Any]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                """SELECT COUNT(*) AS total,
                          SUM(CASE WHEN banned = 1 THEN 1 ELSE 0 END) AS banned,
                          SUM(CASE WHEN active_order_id IS NOT NULL THEN 1 ELSE 0 END) AS busy,
                          AVG(level) AS avg_level,
                          SUM(xp) AS total_xp
                       FROM coders"""
            ).fetchone()
            levels = {
                int(item["level"]): int(item["total"])
                for item in conn.execute(
                    "SELECT level, COUNT(*) AS total FROM coders WHERE banned = 0 GROUP BY level"
                )
            }
        return {
            "total": int(row["total"] or 0),
            "banned": int(row["banned"] or 0),
            "busy": int(row["busy"] or 0),
            "average_level": float(row["avg_level"] or 0.0),
            "total_xp": int(row["total_xp"] or 0),
            "levels": levels,
        }

    def approaching_deadlines(
        self,
        now: datetime,
        *,
        window_hours: float = 48,
        reminder_gap_hours: float = 24,
    ) -> List[Order]:
        """Open or assigned orders due within the window and not reminded recently."""

        horizon = (now + timedelta(hours=window_hours)).date().isoformat()
        reminded_before = (now - timedelta(hours=reminder_gap_hours)).isoformat()
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """SELECT * FROM orders
                       WHERE status IN (?, ?)
                         AND deadline IS NOT NULL
                         AND deadline >= ?
                         AND deadline <= ?
                         AND (last_deadline_reminder IS NULL OR last_deadline_reminder <= ?)
                       ORDER BY deadline""",
                (
                    OrderStatus.OPEN.value,
                    OrderStatus.ASSIGNED.value,
                    now.date().isoformat(),
                    horizon,
                    reminded_before,
                ),
            ).fetchall()
        return [_order_from_row(row) for row in rows]


__all__ = ["OrderStore"]
