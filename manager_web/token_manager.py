"""
Google token lifecycle for the document drive: popup authorization-code sign-in,
persisted token set, refresh before expiry, sign-out with best-effort revocation.

sign_in() never raises: failures end up in `error` for the dashboard to render.
get_valid_access_token() and refresh_access_token() raise TokenManagerError subclasses.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from manager_web import config
from manager_web.errors import (
    ConfigurationError,
    NotAuthenticatedError,
    PopupBlockedError,
    ProviderError,
    TokenManagerError,
)
from manager_web.oauth import build_authorize_url, generate_state
from manager_web.popup import AuthorizationChannel, AuthorizationResult, PopupWindow
from manager_web.token_store import ExternalAccount, ExternalTokenSet, TokenStore, now_ms

logger = logging.getLogger(__name__)

MSG_CONFIG_MISSING = "Configurazione Google OAuth incompleta"
MSG_POPUP_BLOCKED = "Impossibile aprire la finestra di autenticazione. Controlla il blocco popup."
MSG_CANCELLED = "Autenticazione annullata dall'utente"
MSG_EXCHANGE_FAILED = "Errore durante lo scambio del codice di autorizzazione"
MSG_USERINFO_FAILED = "Errore durante il recupero informazioni utente"
MSG_NOT_AUTHENTICATED = "Utente non autenticato"
MSG_NO_REFRESH_TOKEN = "Nessun refresh token disponibile"
MSG_REFRESH_FAILED = "Impossibile rinnovare il token di accesso"

PopupOpener = Callable[[str, str, AuthorizationChannel], PopupWindow | None]


class TokenState(str, enum.Enum):
    NO_TOKEN = "no_token"
    AUTHORIZING = "authorizing"
    VALID = "valid"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class GoogleOAuthSettings:
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: tuple[str, ...] = tuple(config.GOOGLE_SCOPES)
    auth_endpoint: str = config.GOOGLE_AUTH_ENDPOINT
    token_endpoint: str = config.GOOGLE_TOKEN_ENDPOINT
    revoke_endpoint: str = config.GOOGLE_REVOKE_ENDPOINT
    userinfo_endpoint: str = config.GOOGLE_USERINFO_ENDPOINT

    @classmethod
    def from_config(cls) -> "GoogleOAuthSettings":
        return cls(
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            redirect_uri=config.GOOGLE_REDIRECT_URI,
        )


@dataclass
class PendingAuthorization:
    state: str
    url: str
    channel: AuthorizationChannel
    window: PopupWindow


def _provider_text(r: httpx.Response) -> str:
    return (r.text or "").strip()[:500]


def _token_payload(r: httpx.Response, message: str) -> dict:
    """Token endpoint JSON with at least access_token and a numeric expires_in."""
    try:
        data = r.json()
        if not data.get("access_token"):
            raise KeyError("access_token")
        int(data["expires_in"])
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ProviderError(f"{message}: invalid token response") from e
    return data


def _userinfo_payload(r: httpx.Response) -> ExternalAccount:
    try:
        data = r.json()
    except ValueError as e:
        raise ProviderError(f"{MSG_USERINFO_FAILED}: invalid userinfo response", r.status_code, _provider_text(r)) from e
    if not isinstance(data, dict):
        raise ProviderError(f"{MSG_USERINFO_FAILED}: invalid userinfo response", r.status_code, _provider_text(r))
    return ExternalAccount.from_userinfo(data)


class TokenManager:
    def __init__(
        self,
        http: httpx.AsyncClient,
        store: TokenStore,
        settings: GoogleOAuthSettings,
        open_popup: PopupOpener,
        *,
        origin: str = config.APP_ORIGIN,
        poll_interval: float = config.POPUP_POLL_SECONDS,
        refresh_margin_seconds: int = config.TOKEN_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self.http = http
        self.store = store
        self.settings = settings
        self.open_popup = open_popup
        self.origin = origin.rstrip("/")
        self.poll_interval = poll_interval
        self.refresh_margin_seconds = refresh_margin_seconds
        self.clock = clock
        self.state = TokenState.NO_TOKEN
        self.tokens: ExternalTokenSet | None = None
        self.is_loading = False
        self.error: str | None = None
        self.pending: PendingAuthorization | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self.tokens is not None and self.state in (TokenState.VALID, TokenState.REFRESHING)

    @property
    def user(self) -> ExternalAccount | None:
        return self.tokens.user if self.tokens else None

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "is_authenticated": self.is_authenticated,
            "is_loading": self.is_loading,
            "error": self.error,
            "expires_at": self.tokens.expires_at if self.tokens else None,
            "user": self.user.as_dict() if self.user else None,
        }

    def _settle_state(self) -> None:
        self.state = TokenState.VALID if self.tokens is not None else TokenState.NO_TOKEN

    # --- restore ---

    def initialize_from_storage(self) -> bool:
        """Restore a persisted, unexpired token set. No network call."""
        tokens = self.store.load()
        if tokens is None:
            return False
        if tokens.expired(self.clock()):
            logger.info("Persisted Google token expired, discarding")
            self.store.clear()
            return False
        self.tokens = tokens
        self.state = TokenState.VALID
        logger.debug("Restored Google token for %s", tokens.user.email)
        return True

    # --- sign-in ---

    def begin_sign_in(self) -> PendingAuthorization:
        """Pre-flight checks, authorization URL, popup. Raises ConfigurationError or PopupBlockedError."""
        self.error = None
        s = self.settings
        if not s.client_id or not s.redirect_uri:
            self.error = MSG_CONFIG_MISSING
            raise ConfigurationError(MSG_CONFIG_MISSING)
        self._abandon_pending()

        state = generate_state()
        url = build_authorize_url(
            auth_endpoint=s.auth_endpoint,
            client_id=s.client_id,
            redirect_uri=s.redirect_uri,
            scopes=list(s.scopes),
            state=state,
        )
        channel = AuthorizationChannel(self.origin, self.poll_interval)
        window = self.open_popup(url, state, channel)
        if window is None:
            self.error = MSG_POPUP_BLOCKED
            raise PopupBlockedError(MSG_POPUP_BLOCKED)
        self.pending = PendingAuthorization(state=state, url=url, channel=channel, window=window)
        self.state = TokenState.AUTHORIZING
        self.is_loading = True
        return self.pending

    def _abandon_pending(self) -> None:
        """Close the popup of an unfinished authorization; its waiting task then becomes a no-op."""
        if self.pending is None:
            return
        self.pending.window.close()
        self.pending = None
        self.is_loading = False
        if self.state == TokenState.AUTHORIZING:
            self._settle_state()

    async def complete_sign_in(self, pending: PendingAuthorization) -> bool:
        """
        Wait for the popup's answer and exchange the code. Failures are stored in `error`.
        An authorization superseded by a newer sign-in or by sign_out() touches no shared state.
        """
        try:
            result: AuthorizationResult = await pending.channel.wait(pending.window)
            if self.pending is not pending:
                logger.debug("Superseded authorization finished, ignoring")
                return False
            if result.cancelled:
                logger.info("Google authorization cancelled by user")
                self.error = MSG_CANCELLED
                return False
            if result.error:
                logger.warning("Google authorization returned error: %s", result.error)
                self.error = result.error
                return False
            tokens = await self._exchange_code(result.code)
            if self.pending is not pending:
                logger.info("Authorization abandoned during code exchange, discarding tokens")
                return False
            self.tokens = tokens
            self.store.save(tokens)
            self.state = TokenState.VALID
            logger.info("Google drive authorized for %s", tokens.user.email)
            return True
        except TokenManagerError as e:
            if self.pending is pending:
                self.error = str(e)
            return False
        finally:
            if self.pending is pending:
                self.pending = None
                self.is_loading = False
                if self.state == TokenState.AUTHORIZING:
                    self._settle_state()

    async def sign_in(self) -> bool:
        try:
            pending = self.begin_sign_in()
        except TokenManagerError:
            self.is_loading = False
            return False
        return await self.complete_sign_in(pending)

    async def _exchange_code(self, code: str) -> ExternalTokenSet:
        s = self.settings
        captured_at = self.clock()
        try:
            r = await self.http.post(
                s.token_endpoint,
                data={
                    "client_id": s.client_id,
                    "client_secret": s.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": s.redirect_uri,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"{MSG_EXCHANGE_FAILED}: {e}") from e
        if r.status_code != 200:
            logger.error("Token exchange failed: %s", r.status_code)
            raise ProviderError(f"{MSG_EXCHANGE_FAILED}: {_provider_text(r)}", r.status_code, _provider_text(r))
        data = _token_payload(r, MSG_EXCHANGE_FAILED)

        try:
            u = await self.http.get(
                s.userinfo_endpoint, headers={"Authorization": f"Bearer {data['access_token']}"}
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"{MSG_USERINFO_FAILED}: {e}") from e
        if u.status_code != 200:
            raise ProviderError(f"{MSG_USERINFO_FAILED}: {_provider_text(u)}", u.status_code, _provider_text(u))

        return ExternalTokenSet.from_token_response(data, _userinfo_payload(u), captured_at)

    # --- using the token ---

    async def get_valid_access_token(self) -> str:
        """Cached token if it outlives the refresh margin, otherwise refresh first."""
        if not self.is_authenticated:
            raise NotAuthenticatedError(MSG_NOT_AUTHENTICATED)
        if self.tokens.usable(self.clock(), self.refresh_margin_seconds):
            return self.tokens.access_token
        return await self.refresh_access_token()

    def _still_current(self, tokens: ExternalTokenSet) -> None:
        """Raise if sign_out() or a new sign-in replaced `tokens` while a request was in flight."""
        if self.tokens is not tokens:
            logger.info("Token set changed during refresh, discarding the response")
            raise NotAuthenticatedError(MSG_NOT_AUTHENTICATED)

    async def refresh_access_token(self) -> str:
        async with self._refresh_lock:
            current = self.tokens
            if current is None or not current.refresh_token:
                self.error = MSG_NO_REFRESH_TOKEN
                raise TokenManagerError(MSG_NO_REFRESH_TOKEN)
            # Another caller may have refreshed while we waited for the lock
            if current.usable(self.clock(), self.refresh_margin_seconds):
                return current.access_token

            s = self.settings
            self.state = TokenState.REFRESHING
            captured_at = self.clock()
            try:
                r = await self.http.post(
                    s.token_endpoint,
                    data={
                        "client_id": s.client_id,
                        "client_secret": s.client_secret,
                        "refresh_token": current.refresh_token,
                        "grant_type": "refresh_token",
                    },
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                self._still_current(current)
                self._settle_state()
                self.error = f"{MSG_REFRESH_FAILED}: {e}"
                raise ProviderError(self.error) from e
            self._still_current(current)
            if r.status_code != 200:
                self._settle_state()
                text = _provider_text(r)
                logger.error("Token refresh failed: %s", r.status_code)
                self.error = f"{MSG_REFRESH_FAILED}: {text}"
                raise ProviderError(self.error, r.status_code, text)

            try:
                payload = _token_payload(r, MSG_REFRESH_FAILED)
            except ProviderError as e:
                self._settle_state()
                self.error = str(e)
                raise
            self.tokens = current.refreshed(payload, captured_at)
            self.store.save(self.tokens)
            self.state = TokenState.VALID
            self.error = None
            logger.info("Google access token refreshed")
            return self.tokens.access_token

    # --- sign-out ---

    async def sign_out(self) -> None:
        """Best-effort revoke at the provider, then always clear memory and storage."""
        self._abandon_pending()
        if self.tokens is not None:
            try:
                r = await self.http.post(self.settings.revoke_endpoint, params={"token": self.tokens.access_token})
                if r.status_code != 200:
                    logger.warning("Token revocation returned %s", r.status_code)
            except httpx.HTTPError as e:
                logger.warning("Token revocation failed: %s", e)
        self.tokens = None
        self.state = TokenState.NO_TOKEN
        self.is_loading = False
        self.error = None
        self.store.clear()
        logger.info("Google drive signed out")
