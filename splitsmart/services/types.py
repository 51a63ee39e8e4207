from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventStatus(str, enum.Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class SplitType(str, enum.Enum):
    EQUAL = "equal"
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    CUSTOM = "custom"
