"""
Pytest configuration for manager_web: virtual clock timers, an in-memory identity provider,
and local storage in a temp directory.
"""
import heapq
import itertools
import os

# The identity service integration test imports identity_service; keep its DB in memory
os.environ.setdefault("IDENTITY_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("IDENTITY_RATE_LIMIT_SIGN_IN_PER_MINUTE", "1000")

import pytest

from manager_web.errors import AuthError, IdentityServiceError
from manager_web.identity_client import Principal, Profile, SignInResult
from manager_web.local_storage import LocalStorage
from manager_web.session_manager import SessionManager


class FakeHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    """Virtual clock: callbacks fire only from advance(), in deadline order."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay, callback):
        handle = FakeHandle()
        heapq.heappush(self._queue, (self._now + delay, next(self._seq), handle, callback))
        return handle

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = when
            callback()
        self._now = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)


class FakeIdentity:
    """In-memory identity provider + profile store with the IdentityClient interface."""

    def __init__(self):
        self.passwords = {}
        self.principals = {}
        self.profiles = {}
        self.tokens = {}
        self.sign_out_calls = []
        self.fail_sign_out = False
        self._ids = itertools.count(1)

    def add_account(self, email, password, *, name="Mario Rossi", role="user", with_profile=True):
        principal = Principal(uid=f"uid-{next(self._ids)}", email=email)
        self.passwords[email] = password
        self.principals[email] = principal
        if with_profile:
            from datetime import datetime, timezone
            self.profiles[principal.uid] = Profile(
                uid=principal.uid, email=email, name=name, role=role, created_at=datetime(2024, 5, 1, tzinfo=timezone.utc)
            )
        return principal

    def issue_token(self, email):
        token = f"session-{next(self._ids)}"
        self.tokens[token] = self.principals[email]
        return token

    async def verify_credentials(self, email, password):
        if self.passwords.get(email) != password:
            raise AuthError("Invalid email or password")
        return SignInResult(session_token=self.issue_token(email), principal=self.principals[email])

    async def current_principal(self, session_token):
        return self.tokens.get(session_token)

    async def sign_out(self, session_token):
        self.sign_out_calls.append(session_token)
        if self.fail_sign_out:
            raise IdentityServiceError("network down")
        self.tokens.pop(session_token, None)

    def _caller(self, session_token):
        principal = self.tokens.get(session_token)
        if principal is None:
            raise IdentityServiceError("Session expired or revoked", 401)
        profile = self.profiles.get(principal.uid)
        return principal, profile is not None and profile.role == "admin"

    async def create_account(self, email, password, *, session_token):
        _, is_admin = self._caller(session_token)
        if not is_admin:
            raise IdentityServiceError("Administrator role required", 403)
        if email in self.passwords:
            raise IdentityServiceError("Email already registered", 409)
        return self.add_account(email, password, with_profile=False)

    async def get_profile(self, uid):
        return self.profiles.get(uid)

    async def put_profile(self, uid, *, email, name, role, session_token):
        from datetime import datetime, timezone
        caller, is_admin = self._caller(session_token)
        current = self.profiles.get(uid)
        if not is_admin and (caller.uid != uid or role != (current.role if current else "user")):
            raise IdentityServiceError("Cannot write this profile", 403)
        profile = Profile(uid=uid, email=email, name=name, role=role, created_at=datetime.now(timezone.utc))
        self.profiles[uid] = profile
        return profile


class FakeWindow:
    def __init__(self):
        self.closed = False
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        self.closed = True


class FakeClock:
    """Epoch-milliseconds clock for TokenManager."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.ms = start_ms

    def __call__(self) -> int:
        return self.ms

    def advance_minutes(self, minutes: float) -> None:
        self.ms += int(minutes * 60 * 1000)


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "local_storage.json"))


@pytest.fixture
def manager(identity, storage, timers):
    return SessionManager(identity, storage, timers)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def window_factory():
    return FakeWindow
