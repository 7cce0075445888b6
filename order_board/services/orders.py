"""Order listing and report helpers for admin commands."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import Order, OrderStatus

STATUS_LABELS = {
    OrderStatus.OPEN: "🟢 Open",
    OrderStatus.ASSIGNED: "🟡 In progress",
    OrderStatus.COMPLETED: "✅ Completed",
    OrderStatus.CANCELLED: "❌ Cancelled",
}

LEVEL_LABELS = {
    1: ("🟩", "Easy"),
    2: ("🟨", "Beginner"),
    3: ("🟧", "Intermediate"),
    4: ("🟥", "Advanced"),
    5: ("🔴", "Expert"),
    6: ("⚫", "Super Expert"),
}


def level_label(level: int) -> str:
    emoji, name = LEVEL_LABELS.get(level, ("⬜", f"Level {level}"))
    return f"{emoji} Level {level} · {name}"


def format_duration(start: Optional[datetime], end: Optional[datetime]) -> str:
    """Human readable span between assignment and completion."""

    if start is None or end is None:
        return "Unknown"
    seconds = max(0, int((end - start).total_seconds()))
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60
    if days:
        return f"{days} day(s), {hours} hour(s)"
    return f"{hours} hour(s), {minutes} minute(s)"


def summarize_orders(orders: List[Order], *, limit: int) -> List[Dict[str, object]]:
    """Trim and summarize orders for admin listing."""

    limit = max(1, min(limit, 25))
    summaries: List[Dict[str, object]] = []
    for order in orders[:limit]:
        summaries.append(
            {
                "id": order.order_id,
                "status": order.status.value,
                "level": order.level,
                "client": order.client_name,
                "compensation": order.compensation,
                "admin_id": order.admin_id,
                "assigned_to": order.assigned_to,
                "deadline": order.deadline.isoformat() if order.deadline else None,
                "created_at": order.created_at.isoformat() if order.created_at else None,
            }
        )
    return summaries


def summary_line(summary: Dict[str, object]) -> str:
    line = f"`{summary['id']}` · L{summary['level']} · {summary['client']} · {summary['compensation']}"
    if summary.get("assigned_to"):
        line += f" · <@{summary['assigned_to']}>"
    if summary.get("deadline"):
        line += f" · due {summary['deadline']}"
    return line


def history_line(order: Order) -> str:
    if order.status is OrderStatus.COMPLETED:
        detail = f"done in {format_duration(order.assigned_at, order.completed_at)}"
    else:
        detail = "cancelled"
    coder = f" · <@{order.assigned_to}>" if order.assigned_to else ""
    return f"{STATUS_LABELS[order.status]} `{order.order_id}` · {order.client_name}{coder} · {detail}"


def cancellation_notice(order: Order, *, actor_id: str, warnings: tuple = ()) -> str:
    """Human-readable cancellation notice for the acting admin."""

    text = f"🧾 Cancelled order `{order.order_id}` ({order.client_name})"
    if order.assigned_to:
        text += f"; <@{order.assigned_to}> has been released"
    if warnings:
        text += f". Note: {', '.join(warnings)}"
    return text


def stats_lines(order_stats: Dict[str, Any], coder_stats: Dict[str, Any], kind: str) -> List[str]:
    lines: List[str] = []
    if kind in ("general", "orders"):
        lines.extend(
            [
                "**Orders**",
                f"• Total: {order_stats['total']}",
                f"• Open: {order_stats['open']} | In progress: {order_stats['assigned']}",
                f"• Completed: {order_stats['completed']} ({order_stats['completion_rate']:.1f}%)",
                f"• Cancelled: {order_stats['cancelled']} ({order_stats['cancellation_rate']:.1f}%)",
            ]
        )
        average = order_stats.get("average_completion_hours")
        if average is not None:
            lines.append(f"• Average completion time: {average:.1f} hour(s)")
    if kind in ("general", "coders"):
        lines.extend(
            [
                "**Coders**",
                f"• Registered: {coder_stats['total']} | Busy: {coder_stats['busy']} | Banned: {coder_stats['banned']}",
                f"• Average level: {coder_stats['average_level']:.1f} | Total XP: {coder_stats['total_xp']:,}",
            ]
        )
        for level, count in sorted(coder_stats.get("levels", {}).items()):
            lines.append(f"  {level_label(level)}: {count}")
    return lines


__all__ = [
    "STATUS_LABELS",
    "LEVEL_LABELS",
    "level_label",
    "format_duration",
    "summarize_orders",
    "summary_line",
    "history_line",
    "cancellation_notice",
    "stats_lines",
]
