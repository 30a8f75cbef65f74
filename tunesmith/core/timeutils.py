"""
Time helpers
All persisted timestamps are naive UTC
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_since(moment: datetime, now: datetime = None) -> float:
    """Elapsed seconds between a naive UTC timestamp and now"""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return ((now or utcnow()) - moment).total_seconds()
