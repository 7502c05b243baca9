"""
Dashboard figures computed from the caller's contacts and recent activities.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from crm.concurrency import fetch_parallel
from crm.data_access import CrmDataAccess
from crm.records import Activity, Contact, ContactStatus, parse_timestamp

RECENT_LIMIT = 5
NEW_LEAD_WINDOW = timedelta(days=7)
CREATED_TODAY_WINDOW = timedelta(hours=24)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class DashboardSummary:
    total_contacts: int
    status_counts: dict[str, int]
    new_leads_this_week: int
    created_today: int
    conversion_rate: int
    recent_contacts: list[Contact] = field(default_factory=list)
    recent_activities: list[Activity] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "total_contacts": self.total_contacts,
            "status_counts": dict(self.status_counts),
            "new_leads_this_week": self.new_leads_this_week,
            "created_today": self.created_today,
            "conversion_rate": self.conversion_rate,
            "recent_contacts": [c.as_dict() for c in self.recent_contacts],
            "recent_activities": [a.as_dict() for a in self.recent_activities],
        }


def _created_since(contact: Contact, cutoff: datetime) -> bool:
    created = parse_timestamp(contact.created_at)
    return created is not None and created > cutoff


def _activity_sort_key(activity: Activity) -> datetime:
    return parse_timestamp(activity.date) or _EPOCH


def build_dashboard(
    contacts: Sequence[Contact],
    activities: Sequence[Activity],
    now: Optional[datetime] = None,
) -> DashboardSummary:
    """
    Summarise contacts (newest first, as listed by the data-access layer).

    Conversion rate is the share of customers among all contacts, as a
    rounded percentage; zero when there are no contacts.
    """
    now = now or datetime.now(timezone.utc)
    status_counts = {status.value: 0 for status in ContactStatus}
    for contact in contacts:
        status_counts[contact.status.value] += 1

    total = len(contacts)
    customers = status_counts[ContactStatus.CUSTOMER.value]
    conversion_rate = round(customers / total * 100) if total else 0

    week_cutoff = now - NEW_LEAD_WINDOW
    day_cutoff = now - CREATED_TODAY_WINDOW
    new_leads = sum(
        1
        for c in contacts
        if c.status is ContactStatus.LEAD and _created_since(c, week_cutoff)
    )
    created_today = sum(1 for c in contacts if _created_since(c, day_cutoff))

    recent_activities = sorted(activities, key=_activity_sort_key, reverse=True)
    return DashboardSummary(
        total_contacts=total,
        status_counts=status_counts,
        new_leads_this_week=new_leads,
        created_today=created_today,
        conversion_rate=conversion_rate,
        recent_contacts=list(contacts[:RECENT_LIMIT]),
        recent_activities=recent_activities[:RECENT_LIMIT],
    )


def load_dashboard(
    data: CrmDataAccess, now: Optional[datetime] = None
) -> DashboardSummary:
    contacts = data.list_contacts()
    recent = contacts[:RECENT_LIMIT]
    results = fetch_parallel(
        *(lambda contact_id=c.id: data.list_activities(contact_id) for c in recent)
    )
    activities = [activity for batch in results for activity in batch]
    return build_dashboard(contacts, activities, now=now)
