"""
HTTP routes for the CRM API.

Protected routes depend on ``require_user``: without a session they answer
401 and move the navigator to the login view. View routes also record which
view the user is on so auth-state changes can redirect from it.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from crm.concurrency import fetch_parallel
from crm.dashboard import load_dashboard
from crm.data_access import CrmDataAccess
from crm.dependencies import get_data_access, get_session_manager
from crm.records import Activity, Contact, ContactStatus, SessionUser
from crm.schemas import (
    ActivityCreate,
    ActivityListResponse,
    ActivityResponse,
    AuthResponse,
    ChangePasswordRequest,
    ContactCreate,
    ContactCreateResponse,
    ContactDetailResponse,
    ContactListResponse,
    ContactResponse,
    ContactUpdate,
    Credentials,
    DashboardResponse,
    EmailRequest,
    NavigationResponse,
    SessionResponse,
    SignUpRequest,
    StatusResponse,
    TagCreate,
    TagListResponse,
    TagResponse,
    UserResponse,
)
from crm.session import (
    DASHBOARD_PATH,
    FORGOT_PASSWORD_PATH,
    LOGIN_PATH,
    OUTCOME_MESSAGES,
    REGISTER_PATH,
    SessionManager,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CONTACTS_PATH = "/contacts"
TAGS_PATH = "/tags"
SETTINGS_PATH = "/settings"


def view(path: str):
    """Dependency marking the request as a visit to ``path``."""

    def _enter(session: SessionManager = Depends(get_session_manager)) -> None:
        session.navigator.visit(path)

    return _enter


def require_user(
    session: SessionManager = Depends(get_session_manager),
) -> SessionUser:
    if session.user is None:
        session.navigator.navigate(LOGIN_PATH)
        raise HTTPException(
            status_code=401,
            detail={"message": "Not authenticated", "redirect": LOGIN_PATH},
        )
    return session.user


def _user_response(user: Optional[SessionUser]) -> Optional[UserResponse]:
    return UserResponse(**user.as_dict()) if user else None


def _contact_response(contact: Contact) -> ContactResponse:
    return ContactResponse(**contact.as_dict())


def _activity_response(activity: Activity) -> ActivityResponse:
    return ActivityResponse(**activity.as_dict())


def _parse_status(status: Optional[str]) -> str:
    if not status:
        return ""
    try:
        return ContactStatus.parse(status).value
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


# Auth


@router.post(
    "/auth/sign-in",
    response_model=AuthResponse,
    dependencies=[Depends(view(LOGIN_PATH))],
)
def sign_in(
    payload: Credentials, session: SessionManager = Depends(get_session_manager)
):
    outcome = session.sign_in(payload.email, payload.password)
    return AuthResponse(
        outcome=outcome.value,
        message=OUTCOME_MESSAGES[outcome],
        is_email_confirmed=session.is_email_confirmed,
        user=_user_response(session.user),
        redirect=session.navigator.current_path,
    )


@router.post(
    "/auth/sign-up",
    response_model=AuthResponse,
    dependencies=[Depends(view(REGISTER_PATH))],
)
def sign_up(
    payload: SignUpRequest, session: SessionManager = Depends(get_session_manager)
):
    outcome = session.sign_up(payload.email, payload.password)
    return AuthResponse(
        outcome=outcome.value,
        message=OUTCOME_MESSAGES[outcome],
        is_email_confirmed=session.is_email_confirmed,
        user=_user_response(session.user),
        redirect=session.navigator.current_path,
    )


@router.post("/auth/sign-out", response_model=StatusResponse)
def sign_out(session: SessionManager = Depends(get_session_manager)):
    session.sign_out()
    return StatusResponse(
        status="ok",
        message="Signed out successfully",
        redirect=session.navigator.current_path,
    )


@router.post(
    "/auth/reset-password",
    response_model=StatusResponse,
    dependencies=[Depends(view(FORGOT_PASSWORD_PATH))],
)
def reset_password(
    payload: EmailRequest, session: SessionManager = Depends(get_session_manager)
):
    session.reset_password(payload.email)
    return StatusResponse(
        status="ok", message="Password reset instructions sent to your email"
    )


@router.post("/auth/resend-confirmation", response_model=StatusResponse)
def resend_confirmation(
    payload: EmailRequest, session: SessionManager = Depends(get_session_manager)
):
    session.resend_confirmation(payload.email)
    return StatusResponse(status="ok", message="Confirmation email sent")


@router.post(
    "/auth/change-password",
    response_model=StatusResponse,
    dependencies=[Depends(view(SETTINGS_PATH))],
)
def change_password(
    payload: ChangePasswordRequest,
    user: SessionUser = Depends(require_user),
    session: SessionManager = Depends(get_session_manager),
):
    session.change_password(payload.new_password)
    return StatusResponse(status="ok", message="Password changed successfully")


@router.get("/auth/session", response_model=SessionResponse)
def current_session(session: SessionManager = Depends(get_session_manager)):
    return SessionResponse(
        authenticated=session.is_authenticated,
        loading=session.loading,
        is_email_confirmed=session.is_email_confirmed,
        user=_user_response(session.user),
    )


@router.get("/navigation", response_model=NavigationResponse)
def navigation(session: SessionManager = Depends(get_session_manager)):
    navigator = session.navigator
    return NavigationResponse(
        current_path=navigator.current_path,
        history=list(getattr(navigator, "history", [])),
    )


# Dashboard


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    dependencies=[Depends(view(DASHBOARD_PATH))],
)
def dashboard(
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    return DashboardResponse(**load_dashboard(data).as_dict())


# Contacts


@router.get(
    "/contacts",
    response_model=ContactListResponse,
    dependencies=[Depends(view(CONTACTS_PATH))],
)
def list_contacts(
    search: str = Query("", max_length=200),
    status: Optional[str] = Query(None),
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    contacts = data.list_contacts(search=search, status=_parse_status(status))
    return ContactListResponse(contacts=[_contact_response(c) for c in contacts])


@router.post("/contacts", response_model=ContactCreateResponse, status_code=201)
def create_contact(
    payload: ContactCreate,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    fields = payload.model_dump(exclude={"tag_ids"})
    if payload.tag_ids:
        contact, failed = data.create_contact_with_tags(fields, payload.tag_ids)
    else:
        contact, failed = data.create_contact(fields), []
    return ContactCreateResponse(
        contact=_contact_response(contact), failed_tag_ids=failed
    )


@router.get("/contacts/{contact_id}", response_model=ContactDetailResponse)
def get_contact(
    contact_id: str,
    user: SessionUser = Depends(require_user),
    session: SessionManager = Depends(get_session_manager),
    data: CrmDataAccess = Depends(get_data_access),
):
    session.navigator.visit(f"{CONTACTS_PATH}/{contact_id}")
    contact, activities = fetch_parallel(
        lambda: data.get_contact(contact_id),
        lambda: data.list_activities(contact_id),
    )
    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return ContactDetailResponse(
        contact=_contact_response(contact),
        activities=[_activity_response(a) for a in activities],
    )


@router.patch("/contacts/{contact_id}", response_model=ContactResponse)
def update_contact(
    contact_id: str,
    payload: ContactUpdate,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    contact = data.update_contact(contact_id, payload.model_dump(exclude_unset=True))
    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return _contact_response(contact)


@router.delete("/contacts/{contact_id}", response_model=StatusResponse)
def delete_contact(
    contact_id: str,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    data.delete_contact(contact_id)
    return StatusResponse(status="ok", message="Contact deleted successfully")


# Activities


@router.get(
    "/contacts/{contact_id}/activities", response_model=ActivityListResponse
)
def list_activities(
    contact_id: str,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    activities = data.list_activities(contact_id)
    return ActivityListResponse(
        activities=[_activity_response(a) for a in activities]
    )


@router.post(
    "/contacts/{contact_id}/activities",
    response_model=ActivityResponse,
    status_code=201,
)
def create_activity(
    contact_id: str,
    payload: ActivityCreate,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    fields = payload.model_dump(mode="json")
    fields["contact_id"] = contact_id
    activity = data.create_activity(fields)
    if activity is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return _activity_response(activity)


@router.delete("/activities/{activity_id}", response_model=StatusResponse)
def delete_activity(
    activity_id: str,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    data.delete_activity(activity_id)
    return StatusResponse(status="ok", message="Activity deleted successfully")


# Tags


@router.get(
    "/tags", response_model=TagListResponse, dependencies=[Depends(view(TAGS_PATH))]
)
def list_tags(
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    return TagListResponse(tags=[TagResponse(**t.as_dict()) for t in data.list_tags()])


@router.post("/tags", response_model=TagResponse, status_code=201)
def create_tag(
    payload: TagCreate,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    return TagResponse(**data.create_tag(payload.model_dump()).as_dict())


@router.delete("/tags/{tag_id}", response_model=StatusResponse)
def delete_tag(
    tag_id: str,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    data.delete_tag(tag_id)
    return StatusResponse(status="ok", message="Tag deleted successfully")


@router.get("/contacts/{contact_id}/tags", response_model=TagListResponse)
def get_contact_tags(
    contact_id: str,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    tags = data.get_contact_tags(contact_id)
    return TagListResponse(tags=[TagResponse(**t.as_dict()) for t in tags])


@router.put("/contacts/{contact_id}/tags/{tag_id}", response_model=StatusResponse)
def add_tag_to_contact(
    contact_id: str,
    tag_id: str,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    if not data.add_tag_to_contact(contact_id, tag_id):
        raise HTTPException(status_code=404, detail="Contact or tag not found")
    return StatusResponse(status="ok", message="Tag added")


@router.delete(
    "/contacts/{contact_id}/tags/{tag_id}", response_model=StatusResponse
)
def remove_tag_from_contact(
    contact_id: str,
    tag_id: str,
    user: SessionUser = Depends(require_user),
    data: CrmDataAccess = Depends(get_data_access),
):
    if not data.remove_tag_from_contact(contact_id, tag_id):
        raise HTTPException(status_code=404, detail="Contact not found")
    return StatusResponse(status="ok", message="Tag removed")
