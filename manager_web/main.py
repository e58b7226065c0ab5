"""
LyfeUmbria Manager dashboard shell.
Sign-in and inactivity timeout (SessionManager), Google drive authorization through a popup
(TokenManager), the popup's redirect target, and the documents API. Port 8000.
"""
import asyncio
import html
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse

from manager_web import config
from manager_web.drive import DriveClient
from manager_web.errors import (
    AuthError,
    DriveError,
    IdentityServiceError,
    NotAuthenticatedError,
    TokenManagerError,
)
from manager_web.identity_client import ROLE_USER, ROLES, IdentityClient
from manager_web.local_storage import LocalStorage
from manager_web.popup import MESSAGE_ERROR, MESSAGE_SUCCESS, PopupRegistry
from manager_web.session_manager import Session, SessionManager
from manager_web.timers import LoopTimers
from manager_web.token_manager import GoogleOAuthSettings, TokenManager
from manager_web.token_store import TokenStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    session_manager: SessionManager
    token_manager: TokenManager
    popups: PopupRegistry
    drive: DriveClient
    http_clients: list[httpx.AsyncClient] = field(default_factory=list)
    tasks: set[asyncio.Task] = field(default_factory=set)

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def aclose(self) -> None:
        self.session_manager.close()
        for task in list(self.tasks):
            task.cancel()
        for client in self.http_clients:
            await client.aclose()


def build_services() -> Services:
    """Wire the dashboard's services from config."""
    storage = LocalStorage(config.LOCAL_STORAGE_PATH)
    identity_http = httpx.AsyncClient(base_url=config.IDENTITY_SERVICE_URL, timeout=config.HTTP_TIMEOUT_SECONDS)
    google_http = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
    popups = PopupRegistry()
    session_manager = SessionManager(IdentityClient(identity_http), storage, LoopTimers())
    token_manager = TokenManager(
        google_http,
        TokenStore(storage, config.GOOGLE_AUTH_STORAGE_KEY),
        GoogleOAuthSettings.from_config(),
        popups.open,
    )
    drive = DriveClient(google_http, token_manager.get_valid_access_token)
    return Services(
        session_manager=session_manager,
        token_manager=token_manager,
        popups=popups,
        drive=drive,
        http_clients=[identity_http, google_http],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services, restore the signed-in user and the drive token; tear down timers on exit."""
    services = build_services()
    app.state.services = services
    await services.session_manager.restore()
    services.token_manager.initialize_from_storage()
    try:
        yield
    finally:
        await services.aclose()


app = FastAPI(title="LyfeUmbria Manager", version="0.1.0", lifespan=lifespan)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session_manager(services: Services = Depends(get_services)) -> SessionManager:
    return services.session_manager


def get_token_manager(services: Services = Depends(get_services)) -> TokenManager:
    return services.token_manager


def require_session(manager: SessionManager = Depends(get_session_manager)) -> Session:
    """Dependency: signed-in dashboard user, else 401."""
    if manager.session is None:
        raise HTTPException(
            status_code=401,
            detail={"error": "not_authenticated", "error_description": "Sessione scaduta o assente"},
        )
    return manager.session


def require_admin(session: Session = Depends(require_session)) -> Session:
    """Dependency: administrator only (user management screen)."""
    if not session.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"error": "forbidden", "error_description": "Riservato agli amministratori"},
        )
    return session


def _token_http_error(e: TokenManagerError) -> HTTPException:
    status_code = 401 if isinstance(e, NotAuthenticatedError) else 502
    return HTTPException(status_code=status_code, detail={"error": "google_auth", "error_description": str(e)})


def _drive_http_error(e: DriveError) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail={"error": "drive_error", "error_description": e.text, "drive_status": e.status_code},
    )


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "manager_web"}


# --- session ---


@app.post("/login")
async def login(
    email: str = Form(...),
    password: str = Form(...),
    manager: SessionManager = Depends(get_session_manager),
):
    try:
        session = await manager.sign_in(email, password)
    except AuthError as e:
        raise HTTPException(status_code=401, detail={"error": "invalid_credentials", "error_description": str(e)})
    except IdentityServiceError as e:
        logger.error("Sign-in failed: %s", e)
        raise HTTPException(status_code=502, detail={"error": "identity_unavailable", "error_description": str(e)})
    return {"user": session.as_dict()}


@app.post("/logout")
async def logout(manager: SessionManager = Depends(get_session_manager)):
    await manager.logout()
    return manager.status()


@app.get("/session")
def session_status(manager: SessionManager = Depends(get_session_manager)):
    return manager.status()


@app.post("/session/activity")
async def session_activity(manager: SessionManager = Depends(get_session_manager)):
    """User interaction observed in the browser (pointer, key, scroll, touch, click)."""
    manager.record_activity()
    return manager.status()


@app.post("/session/extend")
async def session_extend(
    session: Session = Depends(require_session),
    manager: SessionManager = Depends(get_session_manager),
):
    manager.extend_session()
    return manager.status()


@app.post("/register", status_code=201)
async def register(
    email: str = Form(...),
    password: str = Form(...),
    name: str = Form(...),
    role: str = Form(ROLE_USER),
    admin: Session = Depends(require_admin),
    manager: SessionManager = Depends(get_session_manager),
):
    if role not in ROLES:
        raise HTTPException(status_code=400, detail={"error": "invalid_role", "error_description": f"Ruolo non valido: {role}"})
    try:
        profile = await manager.register(email, password, name, role)
    except IdentityServiceError as e:
        status_code = e.status_code if e.status_code in (400, 401, 403, 409) else 502
        raise HTTPException(status_code=status_code, detail={"error": "registration_failed", "error_description": str(e)})
    return {"uid": profile.uid, "email": profile.email, "name": profile.name, "role": profile.role}


# --- Google drive authorization ---


@app.get("/drive/status")
def drive_status(
    session: Session = Depends(require_session),
    tokens: TokenManager = Depends(get_token_manager),
):
    return tokens.status()


@app.post("/drive/sign-in")
async def drive_sign_in(
    session: Session = Depends(require_session),
    services: Services = Depends(get_services),
):
    """Start the popup authorization; the browser opens authorization_url in a popup."""
    tokens = services.token_manager
    try:
        pending = tokens.begin_sign_in()
    except TokenManagerError as e:
        raise HTTPException(status_code=400, detail={"error": "google_auth", "error_description": str(e)})
    services.spawn(tokens.complete_sign_in(pending))
    return {"authorization_url": pending.url, "state": pending.state}


@app.post("/drive/sign-in/{state}/closed")
async def drive_popup_closed(state: str, services: Services = Depends(get_services)):
    """The browser saw the popup close; the pending sign-in resolves as cancelled."""
    return {"closed": services.popups.mark_closed(state)}


_CALLBACK_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Autenticazione</title></head>
<body>
  <h2>Autenticazione in corso...</h2>
  <p>La finestra si chiuder&agrave; automaticamente.</p>
  <script>
    if (window.opener) {{ window.opener.postMessage({message}, window.location.origin); }}
    window.close();
  </script>
</body>
</html>"""


@app.get("/auth/callback", response_class=HTMLResponse)
async def auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    services: Services = Depends(get_services),
):
    """Redirect target of the Google popup: relay the result to the pending sign-in, then close."""
    if error:
        payload = {"type": MESSAGE_ERROR, "error": error}
    elif code:
        payload = {"type": MESSAGE_SUCCESS, "code": code}
    else:
        payload = {"type": MESSAGE_ERROR, "error": "missing_code"}
    # The channel drops messages whose origin is not the app origin
    origin = f"{request.url.scheme}://{request.url.netloc}"
    delivered = bool(state) and services.popups.deliver(state, origin, payload)
    if not delivered:
        logger.warning("Authorization callback with unknown or expired state")
        payload = {"type": MESSAGE_ERROR, "error": "invalid_state"}
    # The code was consumed server-side; only the outcome goes back to the opener
    opener_message = {k: v for k, v in payload.items() if k != "code"}
    message = json.dumps(opener_message).replace("<", "\\u003c")
    return HTMLResponse(_CALLBACK_PAGE.format(message=message), status_code=200 if delivered else 400)


@app.post("/drive/sign-out")
async def drive_sign_out(
    session: Session = Depends(require_session),
    tokens: TokenManager = Depends(get_token_manager),
):
    await tokens.sign_out()
    return tokens.status()


# --- documents ---


@app.get("/drive/files")
async def drive_files(
    folder_id: str = config.DRIVE_ROOT_FOLDER_ID,
    session: Session = Depends(require_session),
    services: Services = Depends(get_services),
):
    try:
        return {"files": await services.drive.list_files(folder_id)}
    except TokenManagerError as e:
        raise _token_http_error(e)
    except DriveError as e:
        raise _drive_http_error(e)


@app.get("/drive/files/{file_id}")
async def drive_file(
    file_id: str,
    session: Session = Depends(require_session),
    services: Services = Depends(get_services),
):
    """Metadata of one document."""
    try:
        return await services.drive.get_file(file_id)
    except TokenManagerError as e:
        raise _token_http_error(e)
    except DriveError as e:
        raise _drive_http_error(e)


@app.get("/drive/search")
async def drive_search(
    q: str,
    session: Session = Depends(require_session),
    services: Services = Depends(get_services),
):
    try:
        return {"files": await services.drive.search_files(q)}
    except TokenManagerError as e:
        raise _token_http_error(e)
    except DriveError as e:
        raise _drive_http_error(e)


@app.post("/drive/folders", status_code=201)
async def drive_create_folder(
    name: str = Form(...),
    parent_id: str = Form(config.DRIVE_ROOT_FOLDER_ID),
    session: Session = Depends(require_session),
    services: Services = Depends(get_services),
):
    try:
        return await services.drive.create_folder(name, parent_id)
    except TokenManagerError as e:
        raise _token_http_error(e)
    except DriveError as e:
        raise _drive_http_error(e)


@app.post("/drive/files", status_code=201)
async def drive_upload(
    file: UploadFile = File(...),
    parent_id: str = Form(config.DRIVE_ROOT_FOLDER_ID),
    session: Session = Depends(require_session),
    services: Services = Depends(get_services),
):
    content = await file.read()
    try:
        return await services.drive.upload_file(
            file.filename or "documento",
            content,
            file.content_type or "application/octet-stream",
            parent_id,
        )
    except TokenManagerError as e:
        raise _token_http_error(e)
    except DriveError as e:
        raise _drive_http_error(e)


@app.delete("/drive/files/{file_id}")
async def drive_delete(
    file_id: str,
    session: Session = Depends(require_session),
    services: Services = Depends(get_services),
):
    try:
        await services.drive.delete_file(file_id)
    except TokenManagerError as e:
        raise _token_http_error(e)
    except DriveError as e:
        raise _drive_http_error(e)
    return {"deleted": file_id}


# --- pages ---

_LOGIN_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>LyfeUmbria Manager</title></head>
<body>
  <h1>LyfeUmbria Manager</h1>
  <form id="login">
    <p><label>Email <input type="email" name="email" required></label></p>
    <p><label>Password <input type="password" name="password" required></label></p>
    <button type="submit">Accedi</button>
  </form>
  <p id="error" style="color:#b00"></p>
  <script>
    document.getElementById('login').addEventListener('submit', async (ev) => {
      ev.preventDefault();
      const r = await fetch('/login', {method: 'POST', body: new FormData(ev.target)});
      if (r.ok) { window.location.reload(); return; }
      const body = await r.json();
      document.getElementById('error').textContent = (body.detail || {}).error_description || 'Errore di accesso';
    });
  </script>
</body>
</html>"""

_DASHBOARD_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>LyfeUmbria Manager</title></head>
<body>
  <h1>LyfeUmbria Manager</h1>
  <p>Benvenuto, {name} ({role}) &mdash; <button id="logout">Esci</button></p>
  <h2>Documenti</h2>
  <p id="drive">Stato Google Drive...</p>
  <button id="drive-sign-in">Collega Google Drive</button>
  <button id="drive-sign-out">Scollega</button>
  <p id="drive-error" style="color:#b00"></p>
  <div id="warning" style="display:none;position:fixed;inset:0;background:rgba(0,0,0,.5)">
    <div style="background:#fff;max-width:26rem;margin:20vh auto;padding:1.5rem">
      <h3>Sessione in Scadenza</h3>
      <p><strong id="countdown">2:00</strong></p>
      <p>La tua sessione scadr&agrave; a breve per inattivit&agrave;. Vuoi continuare?</p>
      <button id="extend">Continua Sessione</button> <button id="warning-logout">Esci</button>
    </div>
  </div>
  <script>
    const ACTIVITY = ['mousedown', 'mousemove', 'keypress', 'scroll', 'touchstart', 'click'];
    let lastSent = 0;
    const activity = () => {{
      if (Date.now() - lastSent < 5000 || document.getElementById('warning').style.display === 'block') return;
      lastSent = Date.now();
      fetch('/session/activity', {{method: 'POST'}});
    }};
    ACTIVITY.forEach((e) => document.addEventListener(e, activity, true));

    const fmt = (s) => Math.floor(s / 60) + ':' + String(s % 60).padStart(2, '0');
    const poll = async () => {{
      const s = await (await fetch('/session')).json();
      if (s.state === 'unauthenticated') {{ window.location.reload(); return; }}
      document.getElementById('warning').style.display = s.warning_visible ? 'block' : 'none';
      if (s.warning_visible) document.getElementById('countdown').textContent = fmt(s.seconds_left);
      setTimeout(poll, s.warning_visible ? 1000 : 5000);
    }};
    poll();

    const logout = async () => {{ await fetch('/logout', {{method: 'POST'}}); window.location.reload(); }};
    document.getElementById('logout').onclick = logout;
    document.getElementById('warning-logout').onclick = logout;
    document.getElementById('extend').onclick = () => fetch('/session/extend', {{method: 'POST'}});

    const driveStatus = async () => {{
      const d = await (await fetch('/drive/status')).json();
      document.getElementById('drive').textContent = d.is_authenticated
        ? 'Collegato come ' + d.user.email : (d.is_loading ? 'Autenticazione in corso...' : 'Non collegato');
      document.getElementById('drive-error').textContent = d.error || '';
      return d;
    }};
    driveStatus();
    window.addEventListener('message', (ev) => {{
      if (ev.origin !== window.location.origin) return;
      setTimeout(driveStatus, 500);
    }});
    document.getElementById('drive-sign-in').onclick = async () => {{
      const r = await fetch('/drive/sign-in', {{method: 'POST'}});
      const body = await r.json();
      if (!r.ok) {{ document.getElementById('drive-error').textContent = body.detail.error_description; return; }}
      const popup = window.open(body.authorization_url, 'googleAuth', 'width=600,height=600,scrollbars=yes,resizable=yes');
      if (!popup) {{
        fetch('/drive/sign-in/' + body.state + '/closed', {{method: 'POST'}});
        document.getElementById('drive-error').textContent =
          'Impossibile aprire la finestra di autenticazione. Controlla il blocco popup.';
        return;
      }}
      const watch = setInterval(async () => {{
        if (!popup.closed) return;
        clearInterval(watch);
        await fetch('/drive/sign-in/' + body.state + '/closed', {{method: 'POST'}});
        setTimeout(driveStatus, 1500);
      }}, 1000);
      driveStatus();
    }};
    document.getElementById('drive-sign-out').onclick = async () => {{
      await fetch('/drive/sign-out', {{method: 'POST'}});
      driveStatus();
    }};
  </script>
</body>
</html>"""


@app.get("/", response_class=HTMLResponse)
def home(manager: SessionManager = Depends(get_session_manager)):
    """Login form when signed out, dashboard with session countdown and drive controls otherwise."""
    session = manager.session
    if session is None:
        return HTMLResponse(_LOGIN_PAGE)
    return HTMLResponse(
        _DASHBOARD_PAGE.format(name=html.escape(session.name), role=html.escape(session.role))
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "manager_web.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
