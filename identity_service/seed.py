"""
Password hashing and the optional administrator seed. No hardcoded credentials.
Set IDENTITY_SEED_ADMIN_EMAIL + IDENTITY_SEED_ADMIN_PASSWORD to create the first administrator.
"""
import logging
import os

import bcrypt
from sqlalchemy.orm import Session

from identity_service.config import ROLE_ADMIN
from identity_service.models import Account, Profile

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = password.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    raw = plain.encode("utf-8")[:72]
    return bcrypt.checkpw(raw, hashed.encode("utf-8"))


def seed_from_env(db: Session) -> None:
    """Create the administrator account and its profile from env if set and missing."""
    email = (os.environ.get("IDENTITY_SEED_ADMIN_EMAIL") or "").strip().lower()
    password = os.environ.get("IDENTITY_SEED_ADMIN_PASSWORD")
    if not email or not password:
        return
    if db.query(Account).filter(Account.email == email).first() is not None:
        logger.debug("Admin account already exists: %s", email)
        return
    account = Account(email=email, password_hash=hash_password(password))
    db.add(account)
    db.flush()
    db.add(Profile(uid=account.uid, email=email, name="Amministratore", role=ROLE_ADMIN))
    db.commit()
    logger.info("Seeded admin account: %s", email)
