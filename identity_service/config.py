"""
Identity service configuration. Values come from the environment with development defaults.
No secrets in this file; the session signing secret must be set in production.
"""
import os

# SQLite DB for development; tests override with in-memory SQLite
DATABASE_URL = os.environ.get("IDENTITY_DATABASE_URL", "sqlite:///./identity_service.db")

# HS256 secret for durable session tokens
SESSION_SECRET = os.environ.get("IDENTITY_SESSION_SECRET", "dev-only-change-me")

# Durable session lifetime (seconds). Inactivity logout is enforced by the dashboard, not here.
SESSION_TTL_SECONDS = int(os.environ.get("IDENTITY_SESSION_TTL", str(14 * 24 * 3600)))

# Issuer claim put in session tokens
ISSUER = os.environ.get("IDENTITY_ISSUER", "http://127.0.0.1:9000").rstrip("/")

# Profile defaults used when a principal has no profile record yet
DEFAULT_PROFILE_NAME = "Nuovo Utente"
ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = {ROLE_ADMIN, ROLE_USER}

# Sign-in rate limiting: per-IP, per minute
RATE_LIMIT_SIGN_IN_PER_MINUTE = int(os.environ.get("IDENTITY_RATE_LIMIT_SIGN_IN_PER_MINUTE", "20"))
