"""
Trigger timing and naming for the external scheduling facility.

The facility fires at minute resolution, so every instant is truncated to
the minute before it is registered; a cycle may run up to 59 seconds short
of its nominal period.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple


def truncate_to_minute(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(second=0, microsecond=0)


def compute_cycle(now: datetime, rotation_period: timedelta, grace_period: timedelta) -> Tuple[datetime, datetime]:
    """Return ``(warn_at, rotate_at)`` for a cycle starting at ``now``."""
    start = truncate_to_minute(now)
    rotate_at = start + rotation_period
    return rotate_at - grace_period, rotate_at


def cron_expression(moment: datetime) -> str:
    """One-shot cron: ``cron(minute hour day month ? year)`` in UTC."""
    moment = truncate_to_minute(moment)
    return f"cron({moment.minute} {moment.hour} {moment.day} {moment.month} ? {moment.year})"


def warning_rule_name(environment: str, client_id: str) -> str:
    return f"{environment}-rotate-warning-{client_id}"


def rotation_rule_name(environment: str, client_id: str) -> str:
    return f"{environment}-rotate-{client_id}"


def parse_instant(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 instant from a trigger payload, assuming UTC when naive."""
    if not value:
        return None
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return truncate_to_minute(moment)
