"""
HTTP client for the identity service: credential sign-in, current principal, sign-out,
account creation and profile records. Responses are decoded into typed values here,
at the store boundary, so the session layer never sees a partially-typed dict.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from manager_web.errors import AuthError, IdentityServiceError

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "Nuovo Utente"
ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)


class ProfileDecodeError(IdentityServiceError):
    pass


@dataclass(frozen=True)
class Principal:
    uid: str
    email: str


@dataclass(frozen=True)
class SignInResult:
    session_token: str
    principal: Principal


@dataclass(frozen=True)
class Profile:
    uid: str
    email: str | None
    name: str
    role: str
    created_at: datetime


def _parse_datetime(value) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def decode_principal(data: dict) -> Principal:
    uid = data.get("uid")
    email = data.get("email")
    if not uid or not email:
        raise IdentityServiceError("Principal without uid or email")
    return Principal(uid=str(uid), email=str(email))


def decode_profile(data: dict) -> Profile:
    """Validate a profile record. Unknown roles fail; missing name/created_at get defaults."""
    uid = data.get("uid")
    if not uid:
        raise ProfileDecodeError("Profile record without uid")
    role = data.get("role") or ROLE_USER
    if role not in ROLES:
        raise ProfileDecodeError(f"Unknown role {role!r} for profile {uid}")
    return Profile(
        uid=str(uid),
        email=data.get("email"),
        name=data.get("name") or DEFAULT_PROFILE_NAME,
        role=role,
        created_at=_parse_datetime(data.get("created_at")) or datetime.now(timezone.utc),
    )


def _error_description(r: httpx.Response) -> str:
    try:
        detail = r.json().get("detail")
    except ValueError:
        return r.text
    if isinstance(detail, dict):
        return str(detail.get("error_description") or detail.get("error") or r.text)
    return str(detail or r.text)


class IdentityClient:
    """Identity provider and profile store, both served by identity_service."""

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise IdentityServiceError(f"Identity service unreachable: {e}") from e

    async def verify_credentials(self, email: str, password: str) -> SignInResult:
        r = await self._request("POST", "/accounts/sign-in", data={"email": email, "password": password})
        if r.status_code in (401, 429):
            raise AuthError(_error_description(r))
        if r.status_code != 200:
            raise IdentityServiceError(_error_description(r), r.status_code)
        data = r.json()
        return SignInResult(session_token=data["session_token"], principal=decode_principal(data["principal"]))

    async def current_principal(self, session_token: str) -> Principal | None:
        r = await self._request(
            "GET", "/accounts/current", headers={"Authorization": f"Bearer {session_token}"}
        )
        if r.status_code == 401:
            return None
        if r.status_code != 200:
            raise IdentityServiceError(_error_description(r), r.status_code)
        return decode_principal(r.json())

    async def sign_out(self, session_token: str) -> None:
        r = await self._request(
            "POST", "/accounts/sign-out", headers={"Authorization": f"Bearer {session_token}"}
        )
        if r.status_code != 200:
            raise IdentityServiceError(_error_description(r), r.status_code)

    async def create_account(self, email: str, password: str, *, session_token: str) -> Principal:
        """Administrators only: session_token must belong to an admin."""
        r = await self._request(
            "POST",
            "/accounts",
            data={"email": email, "password": password},
            headers={"Authorization": f"Bearer {session_token}"},
        )
        if r.status_code != 201:
            raise IdentityServiceError(_error_description(r), r.status_code)
        return decode_principal(r.json())

    async def get_profile(self, uid: str) -> Profile | None:
        r = await self._request("GET", f"/profiles/{uid}")
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise IdentityServiceError(_error_description(r), r.status_code)
        return decode_profile(r.json())

    async def put_profile(
        self, uid: str, *, email: str | None, name: str, role: str, session_token: str
    ) -> Profile:
        """Write as the principal behind session_token: itself with an unchanged role, or anyone if admin."""
        data = {"name": name, "role": role}
        if email:
            data["email"] = email
        r = await self._request(
            "PUT", f"/profiles/{uid}", data=data, headers={"Authorization": f"Bearer {session_token}"}
        )
        if r.status_code != 200:
            raise IdentityServiceError(_error_description(r), r.status_code)
        return decode_profile(r.json())
