"""
Domain operations over the CRM tables.

Every call is a single backend request (or a short fixed sequence) with no
caching or retry. Writes are stamped with the signed-in user's id, and every
backend failure is logged and re-raised as ``DataAccessError``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from crm.backend import (
    ACTIVITIES_TABLE,
    CONTACT_TAGS_TABLE,
    CONTACTS_TABLE,
    TAGS_TABLE,
    Filter,
    TableBackend,
    eq,
    escape_like,
    ilike,
    in_,
    is_unique_violation,
)
from crm.errors import DataAccessError, DuplicateRecordError
from crm.records import (
    DEFAULT_TAG_COLOR,
    Activity,
    ActivityType,
    Contact,
    ContactStatus,
    Tag,
    activity_from_row,
    contact_from_row,
    now_iso,
    parse_timestamp,
    tag_from_row,
)
from crm.session import SessionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEARCH_COLUMNS = ("first_name", "last_name", "email", "company")
CONTACT_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "company",
    "status",
    "notes",
)


def _pick(fields: Mapping[str, Any], allowed: Iterable[str]) -> dict:
    return {key: fields[key] for key in allowed if key in fields}


def _describe(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


class CrmDataAccess:
    """Contacts, activities, tags and their associations for the current user."""

    def __init__(self, backend: TableBackend, session: SessionManager):
        self.backend = backend
        self.session = session

    def _call(self, action: str, fn: Callable[..., T], *args, **kwargs) -> T:
        try:
            return fn(*args, **kwargs)
        except self.backend.request_errors as exc:
            # The backend text (SQL, PostgREST details) stays in the log.
            message = f"Failed to {action}"
            logger.exception("%s: %s", message, _describe(exc))
            if is_unique_violation(exc):
                raise DuplicateRecordError(message, cause=exc) from exc
            raise DataAccessError(message, cause=exc) from exc

    def _owner_filter(self) -> Filter:
        return eq("user_id", self.session.require_user().id)

    def _owns(self, table: str, row_id: str) -> bool:
        rows = self._call(
            f"load {table}",
            self.backend.select,
            table,
            filters=[eq("id", row_id), self._owner_filter()],
            limit=1,
        )
        return bool(rows)

    # Contacts

    def list_contacts(self, search: str = "", status: str = "") -> list[Contact]:
        filters = [self._owner_filter()]
        any_of: Sequence[Filter] = ()
        search = (search or "").strip()
        if search:
            pattern = f"%{escape_like(search)}%"
            any_of = [ilike(column, pattern) for column in SEARCH_COLUMNS]
        if status:
            filters.append(eq("status", ContactStatus.parse(status).value))
        rows = self._call(
            "load contacts",
            self.backend.select,
            CONTACTS_TABLE,
            filters=filters,
            any_of=any_of,
            order_by="created_at",
            descending=True,
        )
        return [contact_from_row(row) for row in rows]

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        """Return the contact with its tags, or None when it does not exist."""
        rows = self._call(
            "load contact",
            self.backend.select,
            CONTACTS_TABLE,
            filters=[eq("id", contact_id), self._owner_filter()],
            limit=1,
        )
        if not rows:
            return None
        contact = contact_from_row(rows[0])
        contact.tags = self.get_contact_tags(contact_id)
        return contact

    def create_contact(self, fields: Mapping[str, Any]) -> Contact:
        user = self.session.require_user()
        row = _pick(fields, CONTACT_FIELDS)
        row["status"] = ContactStatus.parse(
            row.get("status") or ContactStatus.LEAD
        ).value
        row["user_id"] = user.id
        stored = self._call("create contact", self.backend.insert, CONTACTS_TABLE, row)
        return contact_from_row(stored)

    def update_contact(
        self, contact_id: str, fields: Mapping[str, Any]
    ) -> Optional[Contact]:
        values = _pick(fields, CONTACT_FIELDS)
        if "status" in values:
            values["status"] = ContactStatus.parse(values["status"]).value
        values["updated_at"] = now_iso()
        rows = self._call(
            "update contact",
            self.backend.update,
            CONTACTS_TABLE,
            values,
            filters=[eq("id", contact_id), self._owner_filter()],
        )
        if not rows:
            return None
        return contact_from_row(rows[0])

    def delete_contact(self, contact_id: str) -> None:
        # Activities and tag associations go with it (ON DELETE CASCADE).
        self._call(
            "delete contact",
            self.backend.delete,
            CONTACTS_TABLE,
            filters=[eq("id", contact_id), self._owner_filter()],
        )

    def create_contact_with_tags(
        self, fields: Mapping[str, Any], tag_ids: Sequence[str]
    ) -> tuple[Contact, list[str]]:
        """
        Create a contact, then attach each tag.

        A failed attachment is logged and reported in the returned list; the
        contact itself is kept.
        """
        contact = self.create_contact(fields)
        failed: list[str] = []
        for tag_id in dict.fromkeys(tag_ids):
            try:
                attached = self.add_tag_to_contact(contact.id, tag_id)
            except DataAccessError:
                attached = False
            if not attached:
                failed.append(tag_id)
        if failed:
            logger.warning(
                "Contact %s created but %d tag(s) failed to attach",
                contact.id,
                len(failed),
            )
        contact.tags = self.get_contact_tags(contact.id)
        return contact, failed

    # Activities

    def list_activities(self, contact_id: str) -> list[Activity]:
        rows = self._call(
            "load activities",
            self.backend.select,
            ACTIVITIES_TABLE,
            filters=[eq("contact_id", contact_id), self._owner_filter()],
            order_by="date",
            descending=True,
        )
        return [activity_from_row(row) for row in rows]

    def create_activity(self, fields: Mapping[str, Any]) -> Optional[Activity]:
        """Log an activity, or return None when the contact is not the caller's."""
        user = self.session.require_user()
        contact_id = fields.get("contact_id")
        if not contact_id:
            raise ValueError("contact_id is required")
        if not self._owns(CONTACTS_TABLE, contact_id):
            return None
        # Stored as UTC so text ordering on `date` is chronological.
        occurred = parse_timestamp(fields.get("date")) or datetime.now(timezone.utc)
        row = {
            "contact_id": contact_id,
            "type": ActivityType.parse(fields.get("type") or ActivityType.NOTE).value,
            "description": fields.get("description") or "",
            "date": occurred.astimezone(timezone.utc).isoformat(),
            "user_id": user.id,
        }
        stored = self._call(
            "create activity", self.backend.insert, ACTIVITIES_TABLE, row
        )
        return activity_from_row(stored)

    def delete_activity(self, activity_id: str) -> None:
        self._call(
            "delete activity",
            self.backend.delete,
            ACTIVITIES_TABLE,
            filters=[eq("id", activity_id), self._owner_filter()],
        )

    # Tags

    def list_tags(self) -> list[Tag]:
        rows = self._call(
            "load tags",
            self.backend.select,
            TAGS_TABLE,
            filters=[self._owner_filter()],
            order_by="name",
        )
        return [tag_from_row(row) for row in rows]

    def create_tag(self, fields: Mapping[str, Any]) -> Tag:
        user = self.session.require_user()
        row = {
            "name": fields.get("name"),
            "color": fields.get("color") or DEFAULT_TAG_COLOR,
            "user_id": user.id,
        }
        stored = self._call("create tag", self.backend.insert, TAGS_TABLE, row)
        return tag_from_row(stored)

    def delete_tag(self, tag_id: str) -> None:
        self._call(
            "delete tag",
            self.backend.delete,
            TAGS_TABLE,
            filters=[eq("id", tag_id), self._owner_filter()],
        )

    # Tag associations

    def add_tag_to_contact(self, contact_id: str, tag_id: str) -> bool:
        """Attach a tag; False when the contact or the tag is not the caller's."""
        if not (
            self._owns(CONTACTS_TABLE, contact_id) and self._owns(TAGS_TABLE, tag_id)
        ):
            return False
        self._call(
            "add tag to contact",
            self.backend.insert,
            CONTACT_TAGS_TABLE,
            {"contact_id": contact_id, "tag_id": tag_id},
        )
        return True

    def remove_tag_from_contact(self, contact_id: str, tag_id: str) -> bool:
        if not self._owns(CONTACTS_TABLE, contact_id):
            return False
        self._call(
            "remove tag from contact",
            self.backend.delete,
            CONTACT_TAGS_TABLE,
            filters=[eq("contact_id", contact_id), eq("tag_id", tag_id)],
        )
        return True

    def get_contact_tags(self, contact_id: str) -> list[Tag]:
        links = self._call(
            "load contact tags",
            self.backend.select,
            CONTACT_TAGS_TABLE,
            filters=[eq("contact_id", contact_id)],
        )
        tag_ids = [link["tag_id"] for link in links]
        if not tag_ids:
            return []
        rows = self._call(
            "load contact tags",
            self.backend.select,
            TAGS_TABLE,
            filters=[in_("id", tag_ids), self._owner_filter()],
            order_by="name",
        )
        return [tag_from_row(row) for row in rows]

    # Health

    def check_connection(self) -> bool:
        try:
            self.backend.select(CONTACTS_TABLE, limit=1)
        except self.backend.request_errors as exc:
            logger.error("Backend connection error: %s", _describe(exc))
            return False
        return True
