"""
Exceptions raised by the dashboard's session, token and drive layers.
Messages are user-facing (Italian) because the dashboard shows them inline.
"""


class ManagerError(Exception):
    """Base class for dashboard errors."""


class AuthError(ManagerError):
    """The identity provider rejected the credentials."""


class IdentityServiceError(ManagerError):
    """The identity service answered with an unexpected status or was unreachable."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TokenManagerError(ManagerError):
    """Failure of the Google token lifecycle."""


class ConfigurationError(TokenManagerError):
    pass


class PopupBlockedError(TokenManagerError):
    pass


class NotAuthenticatedError(TokenManagerError):
    pass


class ProviderError(TokenManagerError):
    """Non-2xx answer from the OAuth2 provider; provider_text is its raw body."""

    def __init__(self, message: str, status_code: int | None = None, provider_text: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.provider_text = provider_text


class DriveError(ManagerError):
    """Non-2xx answer from the drive API, uninterpreted. status_code is None when the API was unreachable."""

    def __init__(self, status_code: int | None, text: str):
        if status_code is None:
            super().__init__(f"Drive API unreachable: {text}")
        else:
            super().__init__(f"Drive API error {status_code}: {text}")
        self.status_code = status_code
        self.text = text
