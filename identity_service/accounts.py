"""
Account endpoints: credential sign-in issuing a durable session, account creation,
current principal lookup and sign-out.
"""
import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from sqlalchemy.orm import Session

from identity_service.audit import (
    EVENT_ACCOUNT_CREATED,
    EVENT_SIGN_IN_FAIL,
    EVENT_SIGN_IN_OK,
    EVENT_SIGN_OUT,
    OUTCOME_FAIL,
    get_client_ip,
    log_audit,
)
from identity_service.config import RATE_LIMIT_SIGN_IN_PER_MINUTE
from identity_service.database import get_db
from identity_service.models import Account
from identity_service.rate_limit import SlidingWindowLimiter
from identity_service.seed import hash_password, verify_password
from identity_service.sessions import (
    get_bearer_token,
    get_current_account,
    issue_session_token,
    require_admin_account,
    revoke_session,
)

logger = logging.getLogger(__name__)
router = APIRouter()

sign_in_limiter = SlidingWindowLimiter(RATE_LIMIT_SIGN_IN_PER_MINUTE)


def principal_dict(account: Account) -> dict:
    return {
        "uid": account.uid,
        "email": account.email,
        "created_at": account.created_at.isoformat() if account.created_at else None,
    }


def _normalize_email(email: str) -> str:
    return email.strip().lower()


@router.post("/accounts/sign-in")
def sign_in(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    """Verify credentials; return a durable session token and the principal."""
    ip = get_client_ip(request)
    allowed, retry_after = sign_in_limiter.attempt(ip or "unknown")
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "rate_limited", "error_description": "Too many sign-in attempts"},
            headers={"Retry-After": str(retry_after)},
        )

    account = db.query(Account).filter(Account.email == _normalize_email(email)).first()
    if account is None or not verify_password(password, account.password_hash):
        log_audit(db, EVENT_SIGN_IN_FAIL, uid=account.uid if account else None, ip=ip, outcome=OUTCOME_FAIL)
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_credentials", "error_description": "Invalid email or password"},
        )

    token = issue_session_token(db, account)
    log_audit(db, EVENT_SIGN_IN_OK, uid=account.uid, ip=ip)
    logger.info("Signed in uid=%s", account.uid)
    return {"session_token": token, "principal": principal_dict(account)}


@router.post("/accounts", status_code=201)
def create_account(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    admin: Account = Depends(require_admin_account),
    db: Session = Depends(get_db),
):
    """Administrators only. Create a principal; the profile record is created separately by the caller."""
    email = _normalize_email(email)
    if not email or "@" not in email:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "error_description": "A valid email is required"},
        )
    if len(password) < 6:
        raise HTTPException(
            status_code=400,
            detail={"error": "weak_password", "error_description": "Password must be at least 6 characters"},
        )
    if db.query(Account).filter(Account.email == email).first() is not None:
        raise HTTPException(
            status_code=409,
            detail={"error": "email_in_use", "error_description": "Email already registered"},
        )
    account = Account(email=email, password_hash=hash_password(password))
    db.add(account)
    db.commit()
    db.refresh(account)
    log_audit(db, EVENT_ACCOUNT_CREATED, uid=account.uid, ip=get_client_ip(request))
    logger.info("Created account uid=%s by uid=%s", account.uid, admin.uid)
    return principal_dict(account)


@router.get("/accounts/current")
def current_principal(account: Account = Depends(get_current_account)):
    """Principal of the active session."""
    return principal_dict(account)


@router.post("/accounts/sign-out")
def sign_out(
    request: Request,
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
):
    """Revoke the durable session. Unknown or already revoked tokens still return 200."""
    account = revoke_session(db, token)
    if account is not None:
        log_audit(db, EVENT_SIGN_OUT, uid=account.uid, ip=get_client_ip(request))
    return {}
