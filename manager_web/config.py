"""
Dashboard configuration. Values come from the environment with development defaults.
The Google client secret is never hardcoded; it must come from GOOGLE_CLIENT_SECRET.
"""
import os

# Where the dashboard is served; popup messages are accepted only from this origin
APP_ORIGIN = os.environ.get("MANAGER_APP_ORIGIN", "http://127.0.0.1:8000").rstrip("/")

# Identity service (identity provider + profile store)
IDENTITY_SERVICE_URL = os.environ.get("IDENTITY_SERVICE_URL", "http://127.0.0.1:9000").rstrip("/")

# Client-side durable storage (the dashboard's "local storage")
LOCAL_STORAGE_PATH = os.environ.get("MANAGER_LOCAL_STORAGE_PATH", ".manager_local_storage.json")
GOOGLE_AUTH_STORAGE_KEY = "google_auth"
IDENTITY_SESSION_STORAGE_KEY = "identity_session"

# Inactivity: forced sign-out after 10 minutes idle, countdown shown for the last 2
IDLE_TIMEOUT_SECONDS = 10 * 60
WARNING_LEAD_SECONDS = 2 * 60
COUNTDOWN_TICK_SECONDS = 1.0

# Google OAuth2 client (registered for the popup redirect target /auth/callback)
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.environ.get("GOOGLE_REDIRECT_URI", f"{APP_ORIGIN}/auth/callback")

GOOGLE_AUTH_ENDPOINT = os.environ.get("GOOGLE_AUTH_ENDPOINT", "https://accounts.google.com/o/oauth2/v2/auth")
GOOGLE_TOKEN_ENDPOINT = os.environ.get("GOOGLE_TOKEN_ENDPOINT", "https://oauth2.googleapis.com/token")
GOOGLE_REVOKE_ENDPOINT = os.environ.get("GOOGLE_REVOKE_ENDPOINT", "https://oauth2.googleapis.com/revoke")
GOOGLE_USERINFO_ENDPOINT = os.environ.get("GOOGLE_USERINFO_ENDPOINT", "https://www.googleapis.com/oauth2/v2/userinfo")

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Access tokens this close to expiry are refreshed before use
TOKEN_REFRESH_MARGIN_SECONDS = 5 * 60

# Popup closed-detection poll interval and how long an unanswered popup stays open
POPUP_POLL_SECONDS = 1.0
POPUP_TTL_SECONDS = 600

# Google Drive v3
DRIVE_API_URL = os.environ.get("DRIVE_API_URL", "https://www.googleapis.com/drive/v3").rstrip("/")
DRIVE_UPLOAD_URL = os.environ.get("DRIVE_UPLOAD_URL", "https://www.googleapis.com/upload/drive/v3").rstrip("/")
DRIVE_ROOT_FOLDER_ID = os.environ.get("DRIVE_ROOT_FOLDER_ID", "root")

HTTP_TIMEOUT_SECONDS = 10.0
