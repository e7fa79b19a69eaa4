from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime, matching what the ORM stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
