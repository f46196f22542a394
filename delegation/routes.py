"""
Delegation API endpoints.

Exposed endpoints:
- POST /api/profiles/bootstrap - Create/refresh own profile, get a country
- GET /api/profiles/me - Own profile
- GET /api/profiles - Visible profiles (admin: all)
- PATCH /api/profiles/{user_id} - Edit a profile (self or admin)
- GET /api/countries - Country pool with holders
- PUT /api/admin/profiles/{user_id}/country - Reassign or free a country
- POST /api/admin/reconcile - Repair pool/profile drift
- POST /api/admin/notifications - Post a notification
- GET /api/notifications - All notifications
- POST /api/messages - Send a private message
- GET /api/messages - Visible messages (admin: all)

Handlers are plain `def` so they run in the threadpool; the allocator may
wait on row locks and must not block the event loop.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from loguru import logger

from auth.identity import current_identity
from delegation.database import get_db
from delegation.errors import DelegationError
from delegation.service import (
    CountryService,
    MessageService,
    NotificationService,
    ProfileService,
)
from delegation.schemas import (
    BootstrapProfileRequest,
    CountryResponse,
    MessageResponse,
    NotificationResponse,
    ProfileResponse,
    ReassignCountryRequest,
    ReassignCountryResponse,
    ReconcileResponse,
    SendMessageRequest,
    SendNotificationRequest,
    UpdateProfileRequest,
)

router = APIRouter(prefix="/api", tags=["delegation"])


def as_http_error(e: Exception, action: str) -> HTTPException:
    """Translate a service error into the HTTP error the client sees"""
    if isinstance(e, DelegationError):
        logger.info(f"{action} rejected: {e.__class__.__name__}: {e.message}")
        return HTTPException(status_code=e.status_code, detail=e.message)
    logger.error(f"Error {action}: {e}")
    return HTTPException(status_code=500, detail="Internal server error")


# ==================== PROFILES ====================

@router.post("/profiles/bootstrap", response_model=ProfileResponse)
def bootstrap_profile(
    request: BootstrapProfileRequest,
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    """
    Create the caller's profile on first login (or refresh it on later
    logins) and allocate a random free country.

    Example request:
        {"name": "Ada", "surname": "Lovelace", "phone_number": null}
    """
    try:
        return ProfileService.bootstrap_profile(
            db=db,
            user_id=user_id,
            name=request.name,
            surname=request.surname,
            phone_number=request.phone_number
        )
    except Exception as e:
        raise as_http_error(e, "bootstrapping profile")


@router.get("/profiles/me", response_model=ProfileResponse)
def get_my_profile(
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    try:
        return ProfileService.get_profile(db=db, caller_id=user_id, user_id=user_id)
    except Exception as e:
        raise as_http_error(e, "fetching profile")


@router.get("/profiles", response_model=list[ProfileResponse])
def list_profiles(
    user_id: str = Depends(current_identity),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    try:
        return ProfileService.list_profiles(db=db, caller_id=user_id, skip=skip, limit=limit)
    except Exception as e:
        raise as_http_error(e, "listing profiles")


@router.patch("/profiles/{target_user_id}", response_model=ProfileResponse)
def update_profile(
    target_user_id: str,
    request: UpdateProfileRequest,
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    try:
        return ProfileService.update_profile(
            db=db,
            caller_id=user_id,
            user_id=target_user_id,
            updates=request.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise as_http_error(e, "updating profile")


# ==================== COUNTRIES ====================

@router.get("/countries", response_model=list[CountryResponse])
def list_countries(
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    try:
        return CountryService.list_countries(db=db)
    except Exception as e:
        raise as_http_error(e, "listing countries")


@router.put("/admin/profiles/{target_user_id}/country", response_model=ReassignCountryResponse)
def admin_reassign(
    target_user_id: str,
    request: ReassignCountryRequest,
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    """
    Move a participant to another country, or free theirs with
    `{"country": null}`.
    """
    try:
        return CountryService.admin_reassign(
            db=db,
            caller_id=user_id,
            user_id=target_user_id,
            country=request.country
        )
    except Exception as e:
        raise as_http_error(e, "reassigning country")


@router.post("/admin/reconcile", response_model=ReconcileResponse)
def admin_reconcile(
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    try:
        return CountryService.admin_reconcile(db=db, caller_id=user_id)
    except Exception as e:
        raise as_http_error(e, "reconciling countries")


# ==================== NOTIFICATIONS ====================

@router.post("/admin/notifications", response_model=NotificationResponse, status_code=201)
def admin_send_notification(
    request: SendNotificationRequest,
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    try:
        return NotificationService.admin_send_notification(db=db, caller_id=user_id, content=request.content)
    except Exception as e:
        raise as_http_error(e, "sending notification")


@router.get("/notifications", response_model=list[NotificationResponse])
def list_notifications(
    user_id: str = Depends(current_identity),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    try:
        return NotificationService.list_notifications(db=db, skip=skip, limit=limit)
    except Exception as e:
        raise as_http_error(e, "listing notifications")


# ==================== MESSAGES ====================

@router.post("/messages", response_model=MessageResponse, status_code=201)
def send_message(
    request: SendMessageRequest,
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    try:
        return MessageService.send_message(
            db=db,
            caller_id=user_id,
            recipient_user_id=request.recipient_user_id,
            content=request.content
        )
    except Exception as e:
        raise as_http_error(e, "sending message")


@router.get("/messages", response_model=list[MessageResponse])
def list_messages(
    user_id: str = Depends(current_identity),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    try:
        return MessageService.list_messages(db=db, caller_id=user_id, skip=skip, limit=limit)
    except Exception as e:
        raise as_http_error(e, "listing messages")
