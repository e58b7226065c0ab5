"""
Google OAuth2 authorization request helpers: state generation and the authorization URL
(offline access with forced consent so a refresh token is always issued).
"""
import secrets
from urllib.parse import urlencode


def generate_state() -> str:
    """Opaque value that routes the popup's redirect back to its pending authorization."""
    return secrets.token_urlsafe(32)


def build_authorize_url(
    *,
    auth_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str | None = None,
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
    }
    if state:
        params["state"] = state
    return f"{auth_endpoint}?{urlencode(params)}"
