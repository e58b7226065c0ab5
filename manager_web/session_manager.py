"""
Session Manager: the signed-in dashboard user plus the inactivity-timeout state machine.

States: UNAUTHENTICATED -> ACTIVE on sign-in or restore; ACTIVE -> WARNING after
idle_timeout - warning_lead seconds without activity; WARNING -> ACTIVE on extend or any
activity; WARNING -> UNAUTHENTICATED when the countdown hits zero or the expiry timer fires,
whichever comes first; any state -> UNAUTHENTICATED on logout.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from manager_web.config import (
    COUNTDOWN_TICK_SECONDS,
    IDENTITY_SESSION_STORAGE_KEY,
    IDLE_TIMEOUT_SECONDS,
    WARNING_LEAD_SECONDS,
)
from manager_web.errors import IdentityServiceError, ManagerError
from manager_web.identity_client import (
    DEFAULT_PROFILE_NAME,
    ROLE_ADMIN,
    ROLE_USER,
    IdentityClient,
    Principal,
    Profile,
)
from manager_web.local_storage import LocalStorage
from manager_web.timers import InactivityScheduler, Timers

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    ACTIVE = "active"
    WARNING = "warning"


@dataclass(frozen=True)
class Session:
    uid: str
    email: str
    name: str
    role: str
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def as_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "created_at": self.created_at.isoformat(),
        }


SessionListener = Callable[[Session | None], None]


class SessionManager:
    def __init__(
        self,
        identity: IdentityClient,
        storage: LocalStorage,
        timers: Timers,
        *,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
        warning_lead: float = WARNING_LEAD_SECONDS,
        tick_interval: float = COUNTDOWN_TICK_SECONDS,
    ):
        self.identity = identity
        self.storage = storage
        self.timers = timers
        self.tick_interval = tick_interval
        self.scheduler = InactivityScheduler(
            timers,
            idle_timeout=idle_timeout,
            warning_lead=warning_lead,
            on_warning=self._enter_warning,
            on_expiry=self._expire,
        )
        self.state = SessionState.UNAUTHENTICATED
        self.session: Session | None = None
        self.warning_visible = False
        self.seconds_left = 0
        self._session_token: str | None = None
        self._listeners: list[SessionListener] = []
        self._background: set[asyncio.Task] = set()

    # --- observers ---

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register listener for Session changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_session(self, session: Session | None) -> None:
        self.session = session
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener failed")

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "warning_visible": self.warning_visible,
            "seconds_left": self.seconds_left if self.warning_visible else None,
            "user": self.session.as_dict() if self.session else None,
        }

    # --- establishing a session ---

    async def sign_in(self, email: str, password: str) -> Session:
        """Verify credentials and enter ACTIVE. AuthError propagates to the caller."""
        result = await self.identity.verify_credentials(email, password)
        try:
            session = await self._load_session(result.principal, result.session_token)
        except ManagerError:
            await self._remote_sign_out(result.session_token)
            raise
        self.storage.set_item(IDENTITY_SESSION_STORAGE_KEY, result.session_token)
        self._activate(session, result.session_token)
        logger.info("Signed in uid=%s role=%s", session.uid, session.role)
        return session

    async def restore(self) -> Session | None:
        """Re-establish the session of a still-active principal from the persisted session token."""
        token = self.storage.get_item(IDENTITY_SESSION_STORAGE_KEY)
        if not token:
            return None
        try:
            principal = await self.identity.current_principal(token)
        except IdentityServiceError as e:
            logger.warning("Could not restore session: %s", e)
            return None
        if principal is None:
            logger.info("Persisted session no longer active")
            self.storage.remove_item(IDENTITY_SESSION_STORAGE_KEY)
            return None
        try:
            session = await self._load_session(principal, token)
        except ManagerError as e:
            logger.error("Could not load profile for uid=%s: %s", principal.uid, e)
            return None
        self._activate(session, token)
        logger.info("Restored session uid=%s", session.uid)
        return session

    async def _load_session(self, principal: Principal, token: str) -> Session:
        profile = await self.identity.get_profile(principal.uid)
        if profile is None:
            logger.info("No profile for uid=%s, creating default", principal.uid)
            profile = await self.identity.put_profile(
                principal.uid, email=principal.email, name=DEFAULT_PROFILE_NAME, role=ROLE_USER, session_token=token
            )
        return self._session_from(principal, profile)

    @staticmethod
    def _session_from(principal: Principal, profile: Profile) -> Session:
        return Session(
            uid=principal.uid,
            email=principal.email,
            name=profile.name,
            role=profile.role,
            created_at=profile.created_at,
        )

    def _activate(self, session: Session, token: str) -> None:
        self._session_token = token
        self.state = SessionState.ACTIVE
        self.warning_visible = False
        self.seconds_left = 0
        self.scheduler.schedule_from(self.timers.now())
        self._set_session(session)

    async def register(self, email: str, password: str, name: str, role: str = ROLE_USER) -> Profile:
        """Create an account and its profile record as the signed-in administrator. The current session is unchanged."""
        token = self._session_token
        if token is None:
            raise IdentityServiceError("Nessuna sessione attiva", 401)
        principal = await self.identity.create_account(email, password, session_token=token)
        profile = await self.identity.put_profile(
            principal.uid, email=principal.email, name=name, role=role, session_token=token
        )
        logger.info("Registered uid=%s role=%s", principal.uid, role)
        return profile

    # --- activity ---

    def record_activity(self) -> None:
        """Any user interaction: reschedule both deadlines from now and hide the warning."""
        if self.state == SessionState.UNAUTHENTICATED:
            return
        self.state = SessionState.ACTIVE
        self.warning_visible = False
        self.seconds_left = 0
        self.scheduler.schedule_from(self.timers.now())

    def extend_session(self) -> None:
        """User chose to continue from the warning countdown."""
        self.record_activity()

    def _enter_warning(self) -> None:
        if self.state != SessionState.ACTIVE:
            return
        self.state = SessionState.WARNING
        self.warning_visible = True
        self.seconds_left = int(self.scheduler.warning_lead)
        logger.info("Session idle, expiring in %s seconds", self.seconds_left)
        self.scheduler.start_countdown(self.tick_interval, self._tick)

    def _tick(self) -> None:
        if self.state != SessionState.WARNING:
            self.scheduler.stop_countdown()
            return
        self.seconds_left = max(0, self.seconds_left - 1)
        if self.seconds_left <= 0:
            self._expire()

    # --- ending a session ---

    def _expire(self) -> None:
        if self.state == SessionState.UNAUTHENTICATED:
            return
        logger.info("Session expired after %s seconds idle", int(self.scheduler.idle_timeout))
        token = self._clear_local()
        if token:
            self._spawn(self._remote_sign_out(token))

    async def logout(self) -> None:
        """Explicit logout. Always ends UNAUTHENTICATED even if the remote sign-out fails."""
        token = self._clear_local()
        if token:
            await self._remote_sign_out(token)
        logger.info("Logged out")

    def _clear_local(self) -> str | None:
        token = self._session_token
        self.scheduler.cancel_all()
        self.state = SessionState.UNAUTHENTICATED
        self.warning_visible = False
        self.seconds_left = 0
        self._session_token = None
        self.storage.remove_item(IDENTITY_SESSION_STORAGE_KEY)
        if self.session is not None:
            self._set_session(None)
        return token

    async def _remote_sign_out(self, token: str) -> None:
        try:
            await self.identity.sign_out(token)
        except ManagerError as e:
            logger.warning("Remote sign-out failed, session cleared locally: %s", e)

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning("No running loop, remote sign-out skipped")
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def close(self) -> None:
        """Teardown: cancel every timer unconditionally."""
        self.scheduler.cancel_all()
