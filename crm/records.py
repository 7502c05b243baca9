"""
Domain records mirrored from backend rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from dacite import Config, from_dict


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | datetime | None) -> Optional[datetime]:
    """Parse an ISO timestamp from the backend, assuming UTC when naive."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _LabelEnum(str, Enum):
    @classmethod
    def parse(cls, value: Any):
        """Accepts members or their labels in any casing ("lead", "LEAD", "Lead")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        raise ValueError(f"{value!r} is not a valid {cls.__name__}")


class ContactStatus(_LabelEnum):
    LEAD = "Lead"
    PROSPECT = "Prospect"
    CUSTOMER = "Customer"
    INACTIVE = "Inactive"


class ActivityType(_LabelEnum):
    CALL = "Call"
    MEETING = "Meeting"
    EMAIL = "Email"
    NOTE = "Note"


DEFAULT_TAG_COLOR = "#6366f1"

_ROW_CONFIG = Config(
    type_hooks={
        ContactStatus: ContactStatus.parse,
        ActivityType: ActivityType.parse,
    }
)


@dataclass
class Tag:
    id: str
    name: str
    color: str = DEFAULT_TAG_COLOR
    user_id: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "user_id": self.user_id,
        }


@dataclass
class Contact:
    id: str
    first_name: str
    last_name: str
    status: ContactStatus = ContactStatus.LEAD
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    tags: List[Tag] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "status": self.status.value,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tags": [tag.as_dict() for tag in self.tags],
        }


@dataclass
class Activity:
    id: str
    contact_id: str
    type: ActivityType
    description: str
    date: Optional[str] = None
    created_at: Optional[str] = None
    user_id: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "type": self.type.value,
            "description": self.description,
            "date": self.date,
            "created_at": self.created_at,
            "user_id": self.user_id,
        }


@dataclass
class SessionUser:
    """The signed-in identity as reported by the identity provider."""

    id: str
    email: str
    email_confirmed: bool = False

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "email_confirmed": self.email_confirmed,
        }


def contact_from_row(row: dict) -> Contact:
    data = dict(row)
    data.setdefault("status", ContactStatus.LEAD.value)
    data.pop("tags", None)
    return from_dict(data_class=Contact, data=data, config=_ROW_CONFIG)


def activity_from_row(row: dict) -> Activity:
    return from_dict(data_class=Activity, data=dict(row), config=_ROW_CONFIG)


def tag_from_row(row: dict) -> Tag:
    data = dict(row)
    if not data.get("color"):
        data["color"] = DEFAULT_TAG_COLOR
    return from_dict(data_class=Tag, data=data, config=_ROW_CONFIG)
