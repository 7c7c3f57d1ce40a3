"""Formatting utilities for display values."""

from datetime import datetime, timezone


def format_time_ago(timestamp: str | None,
                    now: datetime | None = None) -> str:
    """Render an ISO timestamp as 'Just now', 'N minutes ago', etc."""
    if not timestamp:
        return "Never"
    try:
        then = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return "Unknown"
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    minutes = int((now - then).total_seconds() / 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minutes ago"
    if minutes < 1440:
        return f"{minutes // 60} hours ago"
    return f"{minutes // 1440} days ago"


def format_sync_time(moment: datetime) -> str:
    """Short local date + time used in the 'Last synced:' status line."""
    return moment.astimezone().strftime("%m/%d/%y, %I:%M:%S %p")
