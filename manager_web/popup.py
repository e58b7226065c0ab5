"""
Popup-based redirect capture. The OAuth redirect target relays its result to the pending
authorization as a same-origin message; the waiting side resolves exactly once, on a success
message, an error message, or the popup being found closed.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol

from manager_web.config import POPUP_POLL_SECONDS, POPUP_TTL_SECONDS

logger = logging.getLogger(__name__)

MESSAGE_SUCCESS = "GOOGLE_AUTH_SUCCESS"
MESSAGE_ERROR = "GOOGLE_AUTH_ERROR"


@dataclass(frozen=True)
class AuthorizationResult:
    code: str | None = None
    error: str | None = None
    cancelled: bool = False


class PopupWindow(Protocol):
    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...


class AuthorizationChannel:
    """Single-use channel between the popup's redirect target and the waiting sign-in."""

    def __init__(self, origin: str, poll_interval: float = POPUP_POLL_SECONDS):
        self.origin = origin
        self.poll_interval = poll_interval
        self._future: asyncio.Future | None = None
        self._listening = True

    def _ensure_future(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def settled(self) -> bool:
        return not self._listening

    def post_message(self, origin: str, payload: dict) -> bool:
        """Deliver a message from the popup. Returns True if it settled the channel."""
        if not self._listening:
            return False
        if origin.rstrip("/") != self.origin:
            logger.warning("Ignoring authorization message from foreign origin %s", origin)
            return False
        kind = payload.get("type")
        if kind == MESSAGE_SUCCESS and payload.get("code"):
            result = AuthorizationResult(code=str(payload["code"]))
        elif kind == MESSAGE_ERROR:
            result = AuthorizationResult(error=str(payload.get("error") or "unknown_error"))
        else:
            logger.debug("Ignoring authorization message of type %s", kind)
            return False
        future = self._ensure_future()
        if future.done():
            return False
        future.set_result(result)
        return True

    async def wait(self, window: PopupWindow) -> AuthorizationResult:
        """Block until a message arrives or the popup is closed; always stops listening on return."""
        future = self._ensure_future()
        try:
            while True:
                done, _ = await asyncio.wait({future}, timeout=self.poll_interval)
                if done:
                    window.close()
                    return future.result()
                if window.closed:
                    return AuthorizationResult(cancelled=True)
        finally:
            self._listening = False
            if not future.done():
                future.cancel()


class PendingPopup:
    """Server-side view of a popup the browser opened for one authorization."""

    def __init__(self, state: str, url: str, ttl_seconds: float = POPUP_TTL_SECONDS):
        self.state = state
        self.url = url
        self.ttl_seconds = ttl_seconds
        self.opened_at = time.monotonic()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or (time.monotonic() - self.opened_at) > self.ttl_seconds

    def close(self) -> None:
        self._closed = True


class PopupRegistry:
    """Pending popups keyed by OAuth state; the redirect route delivers messages through it."""

    def __init__(self, ttl_seconds: float = POPUP_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._pending: dict[str, tuple[PendingPopup, AuthorizationChannel]] = {}

    def open(self, url: str, state: str, channel: AuthorizationChannel) -> PendingPopup:
        self._clean_closed()
        popup = PendingPopup(state, url, self.ttl_seconds)
        self._pending[state] = (popup, channel)
        return popup

    def deliver(self, state: str, origin: str, payload: dict) -> bool:
        entry = self._pending.get(state)
        if entry is None:
            return False
        popup, channel = entry
        if popup.closed:
            del self._pending[state]
            return False
        delivered = channel.post_message(origin, payload)
        if delivered:
            del self._pending[state]
        return delivered

    def mark_closed(self, state: str) -> bool:
        entry = self._pending.pop(state, None)
        if entry is None:
            return False
        entry[0].close()
        return True

    def _clean_closed(self) -> None:
        stale = [s for s, (popup, channel) in self._pending.items() if popup.closed or channel.settled]
        for s in stale:
            del self._pending[s]

    def __len__(self) -> int:
        return len(self._pending)
