"""
Durable sign-in sessions. A session token is an HS256 JWT whose jti is stored in
identity_sessions so that sign-out can revoke it before it expires.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from identity_service.config import ISSUER, ROLE_ADMIN, SESSION_SECRET, SESSION_TTL_SECONDS
from identity_service.database import get_db
from identity_service.models import Account, IdentitySession, Profile

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def issue_session_token(db: Session, account: Account) -> str:
    """Create a durable session for account and return its signed token."""
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=SESSION_TTL_SECONDS)
    jti = secrets.token_urlsafe(24)
    db.add(IdentitySession(jti=jti, account_id=account.id, expires_at=expires_at))
    db.commit()
    payload = {
        "iss": ISSUER,
        "sub": account.uid,
        "email": account.email,
        "jti": jti,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, SESSION_SECRET, algorithm="HS256")


def _decode(token: str) -> dict | None:
    try:
        return jwt.decode(token, SESSION_SECRET, algorithms=["HS256"], issuer=ISSUER)
    except jwt.InvalidTokenError as e:
        logger.debug("Session token rejected: %s", e)
        return None


def _find_session(db: Session, token: str) -> IdentitySession | None:
    payload = _decode(token)
    if not payload or not payload.get("jti"):
        return None
    return db.query(IdentitySession).filter(IdentitySession.jti == payload["jti"]).first()


def resolve_session(db: Session, token: str) -> Account | None:
    """Return the account of an active (unexpired, unrevoked) session, else None."""
    row = _find_session(db, token)
    if row is None or row.revoked:
        return None
    if _as_utc(row.expires_at) <= datetime.now(timezone.utc):
        return None
    return row.account


def revoke_session(db: Session, token: str) -> Account | None:
    """Revoke the session behind token. Returns the account it belonged to, if any."""
    row = _find_session(db, token)
    if row is None:
        return None
    if not row.revoked:
        row.revoked = True
        db.commit()
        logger.debug("Revoked session id=%s", row.id)
    return row.account


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """Extract Bearer token from Authorization header. Raises 401 if missing."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_request", "error_description": "Bearer session token required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_current_account(
    token: Annotated[str, Depends(get_bearer_token)],
    db: Session = Depends(get_db),
) -> Account:
    """Dependency: active session token -> Account."""
    account = resolve_session(db, token)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_token", "error_description": "Session expired or revoked"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account


def is_admin(db: Session, account: Account) -> bool:
    profile = db.get(Profile, account.uid)
    return profile is not None and profile.role == ROLE_ADMIN


def require_admin_account(
    account: Annotated[Account, Depends(get_current_account)],
    db: Session = Depends(get_db),
) -> Account:
    """Dependency: like get_current_account, but the profile must carry the admin role."""
    if not is_admin(db, account):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "error_description": "Administrator role required"},
        )
    return account
