"""
Pytest configuration for identity_service: in-memory SQLite, a TestClient and signed-in sessions.
"""
import os

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["IDENTITY_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["IDENTITY_SESSION_SECRET"] = "test-secret"
# Many sign-ins per test run come from the same TestClient address
os.environ["IDENTITY_RATE_LIMIT_SIGN_IN_PER_MINUTE"] = "1000"
for name in ("IDENTITY_SEED_ADMIN_EMAIL", "IDENTITY_SEED_ADMIN_PASSWORD"):
    if name in os.environ:
        del os.environ[name]

import pytest
from fastapi.testclient import TestClient

from identity_service.database import init_db, session_scope
from identity_service.main import app
from identity_service.models import Account, Profile
from identity_service.seed import hash_password


@pytest.fixture
def client():
    init_db()
    return TestClient(app)


@pytest.fixture
def session_for(client):
    """Factory: make sure an account exists (with a profile of `role`, if given), sign it in.
    Returns (uid, Authorization headers)."""

    def make(email, password="segreto1", role=None):
        with session_scope() as db:
            account = db.query(Account).filter(Account.email == email).first()
            if account is None:
                account = Account(email=email, password_hash=hash_password(password))
                db.add(account)
                db.flush()
                if role is not None:
                    db.add(Profile(uid=account.uid, email=email, name=email.split("@")[0], role=role))
                db.commit()
            uid = account.uid
        r = client.post("/accounts/sign-in", data={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return uid, {"Authorization": f"Bearer {r.json()['session_token']}"}

    return make


@pytest.fixture
def admin_headers(session_for):
    return session_for("direzione@lyfeumbria.it", "direzione1", role="admin")[1]
