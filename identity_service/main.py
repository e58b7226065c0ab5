"""
Identity service: credential sign-in with durable sessions, account creation,
profile records and audit log. Port 9000.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from identity_service.accounts import router as accounts_router
from identity_service.audit import router as audit_router
from identity_service.database import init_db, session_scope
from identity_service.profiles import router as profiles_router
from identity_service.seed import seed_from_env


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed the administrator from env on startup."""
    init_db()
    with session_scope() as db:
        seed_from_env(db)
    yield


app = FastAPI(title="Identity Service", version="0.1.0", lifespan=lifespan)
app.include_router(accounts_router, tags=["accounts"])
app.include_router(profiles_router, tags=["profiles"])
app.include_router(audit_router)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "identity_service"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "identity_service.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )
