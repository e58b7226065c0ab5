"""
Security audit trail: sign-in attempts, sign-outs, account and profile creation.
Only event type, uid, client IP and outcome are kept; never tokens or passwords.
"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from identity_service.database import get_db
from identity_service.models import AuditLog

EVENT_SIGN_IN_OK = "sign_in_ok"
EVENT_SIGN_IN_FAIL = "sign_in_fail"
EVENT_SIGN_OUT = "sign_out"
EVENT_ACCOUNT_CREATED = "account_created"
EVENT_PROFILE_CREATED = "profile_created"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"

MAX_AUDIT_ROWS = 500

router = APIRouter(tags=["audit"])


def get_client_ip(request: Request | None) -> str | None:
    client = request.client if request is not None else None
    return client.host if client is not None else None


def log_audit(
    db: Session,
    event_type: str,
    *,
    uid: str | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    db.add(AuditLog(event_type=event_type, uid=uid, ip=ip, outcome=outcome))
    db.commit()


def audit_dict(row: AuditLog) -> dict:
    return {
        "id": row.id,
        "at": row.created_at.isoformat() if row.created_at else None,
        "event_type": row.event_type,
        "uid": row.uid,
        "ip": row.ip,
        "outcome": row.outcome,
    }


@router.get("/audit")
def recent_events(
    limit: int = Query(100, ge=1, le=MAX_AUDIT_ROWS),
    event_type: str | None = None,
    uid: str | None = None,
    outcome: str | None = None,
    db: Session = Depends(get_db),
):
    """Newest first, optionally narrowed by event type, uid and outcome."""
    filters = [
        column == value
        for column, value in (
            (AuditLog.event_type, event_type),
            (AuditLog.uid, uid),
            (AuditLog.outcome, outcome),
        )
        if value
    ]
    rows = (
        db.query(AuditLog)
        .filter(*filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return [audit_dict(r) for r in rows]
