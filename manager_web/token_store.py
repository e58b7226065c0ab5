"""
External token set for the Google drive and its persistence: one JSON blob
{accessToken, refreshToken, expiresAt, user} in local storage under a fixed key.
expiresAt is epoch milliseconds.
"""
import json
import logging
import time
from dataclasses import dataclass, field, replace

from manager_web.local_storage import LocalStorage

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ExternalAccount:
    email: str = ""
    name: str = ""
    picture: str = ""

    @classmethod
    def from_userinfo(cls, data: dict | None) -> "ExternalAccount":
        data = data or {}
        return cls(
            email=str(data.get("email") or ""),
            name=str(data.get("name") or ""),
            picture=str(data.get("picture") or ""),
        )

    def as_dict(self) -> dict:
        return {"email": self.email, "name": self.name, "picture": self.picture}


@dataclass(frozen=True)
class ExternalTokenSet:
    access_token: str
    refresh_token: str | None
    expires_at: int
    user: ExternalAccount = field(default_factory=ExternalAccount)

    @classmethod
    def from_token_response(cls, data: dict, user: ExternalAccount, captured_at_ms: int) -> "ExternalTokenSet":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=captured_at_ms + int(data["expires_in"]) * 1000,
            user=user,
        )

    def expired(self, at_ms: int) -> bool:
        return self.expires_at <= at_ms

    def usable(self, at_ms: int, margin_seconds: int) -> bool:
        """True when the access token stays valid for more than margin_seconds after at_ms."""
        return self.expires_at > at_ms + margin_seconds * 1000

    def refreshed(self, data: dict, captured_at_ms: int) -> "ExternalTokenSet":
        """New access token and expiry from a refresh response; the refresh token is kept."""
        return replace(
            self,
            access_token=data["access_token"],
            expires_at=captured_at_ms + int(data["expires_in"]) * 1000,
        )

    def to_blob(self) -> str:
        return json.dumps(
            {
                "accessToken": self.access_token,
                "refreshToken": self.refresh_token,
                "expiresAt": self.expires_at,
                "user": self.user.as_dict(),
            }
        )

    @classmethod
    def from_blob(cls, blob: str) -> "ExternalTokenSet":
        """Parse a persisted blob. Raises ValueError when it is not a usable record."""
        data = json.loads(blob)
        if not isinstance(data, dict):
            raise ValueError("token blob is not an object")
        access_token = data.get("accessToken")
        expires_at = data.get("expiresAt")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token blob has no accessToken")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise ValueError("token blob has no numeric expiresAt")
        refresh_token = data.get("refreshToken")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            expires_at=int(expires_at),
            user=ExternalAccount.from_userinfo(data.get("user") if isinstance(data.get("user"), dict) else None),
        )


class TokenStore:
    """The persisted token blob. Mutated only by TokenManager."""

    def __init__(self, storage: LocalStorage, key: str):
        self.storage = storage
        self.key = key

    def save(self, tokens: ExternalTokenSet) -> None:
        self.storage.set_item(self.key, tokens.to_blob())

    def load(self) -> ExternalTokenSet | None:
        """Stored token set, or None. A corrupt blob is deleted and treated as absent."""
        blob = self.storage.get_item(self.key)
        if blob is None:
            return None
        try:
            return ExternalTokenSet.from_blob(blob)
        except ValueError as e:
            logger.warning("Discarding unreadable token blob: %s", e)
            self.clear()
            return None

    def clear(self) -> None:
        self.storage.remove_item(self.key)
