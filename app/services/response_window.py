"""
Roomify Match Core — Response window arithmetic

The tenant must send a first message within ``RESPONSE_WINDOW_SECONDS`` of a
match.  This module holds the single definition of "how many seconds are
left", shared by the authoritative expiry check in ``MatchService`` and by the
display countdown on the client.

Rules:
  - no deadline, or the tenant already replied  ->  0 (the clock is inert)
  - otherwise                                   ->  max(0, ceil(deadline - now))

Rounding up means a match is never reported as having 0 seconds left while
part of its last second remains, so ``expire_if_due`` cannot fire early.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta


def compute_deadline(created_at: datetime, window_seconds: int) -> datetime:
    return created_at + timedelta(seconds=window_seconds)


def seconds_left(
    deadline: datetime | None,
    tenant_first_reply_at: datetime | None,
    now: datetime,
) -> int:
    """Whole seconds remaining before the response window lapses."""
    if deadline is None or tenant_first_reply_at is not None:
        return 0
    remaining = (deadline - now).total_seconds()
    return max(0, math.ceil(remaining))


def is_due(
    deadline: datetime | None,
    tenant_first_reply_at: datetime | None,
    now: datetime,
) -> bool:
    """True when the window has lapsed without a tenant reply."""
    if deadline is None or tenant_first_reply_at is not None:
        return False
    return seconds_left(deadline, None, now) == 0


def format_window(window_seconds: int) -> str:
    """Human form of a window length: ``24h``, ``1h 30min``, ``45min``, ``30s``."""
    hours, rest = divmod(int(window_seconds), 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}min")
    if secs:
        parts.append(f"{secs}s")
    return " ".join(parts) or "0s"
