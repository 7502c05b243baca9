"""
Pydantic schemas for the CRM HTTP API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from crm.records import DEFAULT_TAG_COLOR, ActivityType, ContactStatus

MIN_PASSWORD_LENGTH = 6


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class Credentials(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    confirm_password: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self


class EmailRequest(BaseModel):
    email: EmailStr


class ChangePasswordRequest(BaseModel):
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password != self.new_password:
            raise ValueError("New passwords do not match")
        return self


class UserResponse(BaseModel):
    id: str
    email: str
    email_confirmed: bool


class AuthResponse(BaseModel):
    outcome: str
    message: str
    is_email_confirmed: bool
    user: Optional[UserResponse] = None
    redirect: str


class SessionResponse(BaseModel):
    authenticated: bool
    loading: bool
    is_email_confirmed: bool
    user: Optional[UserResponse] = None


class NavigationResponse(BaseModel):
    current_path: str
    history: list[str] = []


class StatusResponse(BaseModel):
    status: Literal["ok"]
    message: Optional[str] = None
    redirect: Optional[str] = None


class _ContactFields(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=64)
    company: Optional[str] = Field(default=None, max_length=256)
    notes: Optional[str] = None

    @field_validator("email", "phone", "company", "notes", mode="before")
    @classmethod
    def empty_as_missing(cls, value):
        return _blank_to_none(value)


class ContactCreate(_ContactFields):
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: str = Field(..., min_length=1, max_length=128)
    status: ContactStatus = ContactStatus.LEAD
    tag_ids: list[str] = []

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value):
        return ContactStatus.parse(value)


class ContactUpdate(_ContactFields):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    status: Optional[ContactStatus] = None

    # Omitted is fine; an explicit null would clear a required column.
    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def reject_null_name(cls, value):
        if value is None:
            raise ValueError("Name cannot be null")
        return value.strip() if isinstance(value, str) else value

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value):
        if value is None:
            raise ValueError("Status cannot be null")
        return ContactStatus.parse(value)


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    color: str = Field(default=DEFAULT_TAG_COLOR, pattern=r"^#[0-9a-fA-F]{6}$")


class TagResponse(BaseModel):
    id: str
    name: str
    color: str


class ContactResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    tags: list[TagResponse] = []


class ContactListResponse(BaseModel):
    contacts: list[ContactResponse]


class ContactCreateResponse(BaseModel):
    contact: ContactResponse
    failed_tag_ids: list[str] = []


class ActivityCreate(BaseModel):
    type: ActivityType = ActivityType.NOTE
    description: str = Field(..., min_length=1)
    date: Optional[datetime] = None

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, value):
        return ActivityType.parse(value)


class ActivityResponse(BaseModel):
    id: str
    contact_id: str
    type: str
    description: str
    date: Optional[str] = None
    created_at: Optional[str] = None


class ActivityListResponse(BaseModel):
    activities: list[ActivityResponse]


class TagListResponse(BaseModel):
    tags: list[TagResponse]


class ContactDetailResponse(BaseModel):
    contact: ContactResponse
    activities: list[ActivityResponse]


class DashboardResponse(BaseModel):
    total_contacts: int
    status_counts: dict[str, int]
    new_leads_this_week: int
    created_today: int
    conversion_rate: int
    recent_contacts: list[ContactResponse]
    recent_activities: list[ActivityResponse]
