"""
Profile records keyed by principal uid: the structured store the dashboard reads the
user's display name and role from.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from sqlalchemy.orm import Session

from identity_service.audit import EVENT_PROFILE_CREATED, get_client_ip, log_audit
from identity_service.config import DEFAULT_PROFILE_NAME, ROLE_USER, ROLES
from identity_service.database import get_db
from identity_service.models import Account, Profile
from identity_service.sessions import get_current_account, is_admin

logger = logging.getLogger(__name__)
router = APIRouter()


def profile_dict(profile: Profile) -> dict:
    return {
        "uid": profile.uid,
        "email": profile.email,
        "name": profile.name,
        "role": profile.role,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


@router.get("/profiles/{uid}")
def get_profile(uid: str, db: Session = Depends(get_db)):
    profile = db.get(Profile, uid)
    if profile is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "not_found", "error_description": "No profile for this uid"},
        )
    return profile_dict(profile)


@router.put("/profiles/{uid}")
def put_profile(
    uid: str,
    request: Request,
    email: str | None = Form(None),
    name: str | None = Form(None),
    role: str | None = Form(None),
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """
    Create or replace the profile record for uid.
    Administrators may write any profile. Anyone else may only write their own,
    and only with the role it already has (user for a new profile).
    An omitted role keeps the current one.
    """
    if role is not None and role not in ROLES:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_role", "error_description": f"role must be one of {sorted(ROLES)}"},
        )
    profile = db.get(Profile, uid)
    created = profile is None
    current_role = ROLE_USER if created else profile.role
    role = role or current_role
    if not is_admin(db, account):
        if account.uid != uid:
            raise HTTPException(
                status_code=403,
                detail={"error": "forbidden", "error_description": "Cannot write another principal's profile"},
            )
        if role != current_role:
            raise HTTPException(
                status_code=403,
                detail={"error": "forbidden", "error_description": "Administrator role required to change role"},
            )

    if created:
        profile = Profile(uid=uid, created_at=datetime.now(timezone.utc))
        db.add(profile)
    profile.email = email
    profile.name = name or DEFAULT_PROFILE_NAME
    profile.role = role
    db.commit()
    db.refresh(profile)
    if created:
        log_audit(db, EVENT_PROFILE_CREATED, uid=uid, ip=get_client_ip(request))
        logger.info("Created profile uid=%s role=%s by uid=%s", uid, role, account.uid)
    return profile_dict(profile)
