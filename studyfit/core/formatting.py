"""Elapsed-time rendering for run screens and summaries."""

from __future__ import annotations


def format_clock(seconds: int) -> str:
    """Countdown display: "1h 02m 03s", or "2m 03s" under an hour."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    return f"{minutes}m {secs:02d}s"


def format_summary(seconds: int) -> str:
    """Finished-duration display: "12 minutes 5 seconds".

    Minutes are always shown, seconds only when non-zero, so zero reads
    "0 minutes".
    """
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    parts = [f"{minutes} minute{'s' if minutes != 1 else ''}"]
    if secs > 0:
        parts.append(f"{secs} second{'s' if secs != 1 else ''}")
    return " ".join(parts)
