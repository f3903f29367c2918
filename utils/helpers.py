"""
============================================================================
PULSE ENGINE - HELPERS UTILITY
============================================================================
Time and string helpers shared by the scheduler, worker and dispatcher.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


# ============================================================================
# TIME UTILITIES
# ============================================================================

class TimeHelper:
    """
    Time and date manipulation utilities.

    All persisted timestamps are naive UTC datetimes.
    """

    @staticmethod
    def utcnow() -> datetime:
        """Get current UTC datetime without tzinfo."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def to_naive_utc(dt: datetime) -> datetime:
        """Convert an aware datetime to naive UTC; naive values pass through."""
        if dt.tzinfo is None:
            return dt
        return dt.astimezone(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def isoformat(dt: Optional[datetime]) -> Optional[str]:
        """
        Format a naive UTC datetime as an ISO-8601 string with a Z suffix.

        Args:
            dt: Datetime to format

        Returns:
            ISO string, or None when dt is None
        """
        if dt is None:
            return None
        dt = TimeHelper.to_naive_utc(dt)
        return dt.isoformat(timespec="milliseconds") + "Z"

    @staticmethod
    def add_minutes(dt: datetime, minutes: int) -> datetime:
        return dt + timedelta(minutes=minutes)

    @staticmethod
    def epoch_millis(dt: datetime) -> int:
        """Milliseconds since the epoch for a naive UTC datetime."""
        return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)

    @staticmethod
    def seconds_to_human_readable(seconds: int) -> str:
        """
        Convert seconds to human-readable format.

        Args:
            seconds: Number of seconds

        Returns:
            Human-readable string (e.g., "2h 30m 15s")
        """
        seconds = int(seconds)
        if seconds < 0:
            return "0s"

        days, remainder = divmod(seconds, 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes, secs = divmod(remainder, 60)

        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            parts.append(f"{secs}s")

        return " ".join(parts)


# ============================================================================
# STRING UTILITIES
# ============================================================================

class StringHelper:
    """
    String manipulation utilities.
    """

    @staticmethod
    def truncate(text: str, max_length: int = 100, suffix: str = "...") -> str:
        """
        Truncate text to maximum length.

        Args:
            text: Text to truncate
            max_length: Maximum length including the suffix
            suffix: Suffix to add if truncated

        Returns:
            Truncated text
        """
        if len(text) <= max_length:
            return text
        return text[:max_length - len(suffix)] + suffix


# ============================================================================
# END OF HELPERS MODULE
# ============================================================================
