"""Time helpers; everything in the billing code is UTC-aware."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
