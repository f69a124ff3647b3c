"""
Point-in-time snapshot selection for ``clawstash restore --at``.

Accepts either an ISO-8601 timestamp or a relative phrase such as
``"3 days ago"`` and picks the snapshot closest to that instant.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Sequence

from clawstash_py.engine import Snapshot
from clawstash_py.errors import InvalidTimeExpressionError

RELATIVE_RE = re.compile(
    r"^(\d+)\s+(minute|hour|day|week|month)s?\s+ago$", re.IGNORECASE
)

# A month is a flat 30 days, not a calendar month
UNIT_SECONDS: Dict[str, int] = {
    "minute": 60,
    "hour": 3_600,
    "day": 86_400,
    "week": 604_800,
    "month": 2_592_000,
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_time_expression(
    expression: str, now: Optional[datetime] = None
) -> datetime:
    """
    Convert a time expression into an aware UTC datetime.

    Args:
        expression: ``"<n> <unit>[s] ago"`` or an ISO-8601 timestamp
        now: Reference instant for relative expressions (defaults to now)

    Raises:
        InvalidTimeExpressionError: If the expression cannot be parsed.
    """
    text = expression.strip()
    match = RELATIVE_RE.match(text)
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()
        reference = _as_utc(now) if now else datetime.now(timezone.utc)
        try:
            return reference - timedelta(seconds=amount * UNIT_SECONDS[unit])
        except OverflowError:
            raise InvalidTimeExpressionError(
                f"Cannot parse time: {expression} (out of range)"
            ) from None

    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _as_utc(datetime.fromisoformat(iso))
    except ValueError:
        raise InvalidTimeExpressionError(f"Cannot parse time: {expression}") from None


def resolve_snapshot(
    snapshots: Sequence[Snapshot],
    expression: str,
    now: Optional[datetime] = None,
) -> Optional[Snapshot]:
    """
    Pick the snapshot whose time is closest to *expression*.

    Ties go to the snapshot that comes first in *snapshots*, so pass them
    in chronological order.

    Returns:
        The closest snapshot, or None when *snapshots* is empty.
    """
    target = parse_time_expression(expression, now)

    best: Optional[Snapshot] = None
    best_diff: Optional[float] = None
    for snap in snapshots:
        diff = abs((_as_utc(snap.time) - target).total_seconds())
        if best_diff is None or diff < best_diff:
            best_diff = diff
            best = snap
    return best
