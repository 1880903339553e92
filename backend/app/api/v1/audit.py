"""Audit log API endpoints (read-only; the log is append-only)."""
import csv
import io
import json
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import require_role
from app.db.session import get_session
from app.models.user import User
from app.schemas.audit import AuditListResponse, AuditLogOut
from app.services import audit as audit_svc

router = APIRouter()

AUDIT_READERS = ("admin", "manager", "auditor")


@router.get("", response_model=AuditListResponse, summary="List audit entries, oldest first")
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role(*AUDIT_READERS))],
    entity_type: Annotated[str | None, Query(description="e.g. 'purchase_order' or 'approval_rules'")] = None,
    entity_id: Annotated[str | None, Query(description="Document reference id or record id")] = None,
    action: Annotated[str | None, Query(description="e.g. 'workflow_step_approved'")] = None,
    start_date: Annotated[datetime | None, Query(description="ISO 8601, inclusive")] = None,
    end_date: Annotated[datetime | None, Query(description="ISO 8601, inclusive")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
):
    query = audit_svc.entries_query(entity_type, entity_id, action, start_date, end_date).limit(limit)
    logs = (await db.execute(query)).scalars().all()
    items = [AuditLogOut.model_validate(log) for log in logs]
    return AuditListResponse(items=items, total=len(items))


@router.get(
    "/export",
    summary="Export audit logs as CSV",
    description="Stream audit logs as CSV file with optional filters.",
)
async def export_audit_logs(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: Annotated[User, Depends(require_role(*AUDIT_READERS))],
    start_date: Annotated[datetime | None, Query(description="Filter logs from this date (ISO 8601)")] = None,
    end_date: Annotated[datetime | None, Query(description="Filter logs until this date (ISO 8601)")] = None,
    entity_type: Annotated[str | None, Query(description="Filter by entity type")] = None,
    entity_id: Annotated[str | None, Query(description="Filter by entity id")] = None,
):
    """Columns: id, created_at, action, entity_type, entity_id, actor_email, old_values, new_values, notes."""
    logs = (await db.execute(audit_svc.entries_query(entity_type, entity_id, None, start_date, end_date))).scalars().all()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "created_at", "action", "entity_type", "entity_id",
        "actor_email", "old_values", "new_values", "notes",
    ])
    for log in logs:
        writer.writerow([
            str(log.id),
            log.created_at.isoformat() if log.created_at else "",
            log.action,
            log.entity_type,
            log.entity_id or "",
            log.actor_email or "",
            json.dumps(log.old_values) if log.old_values is not None else "",
            json.dumps(log.new_values) if log.new_values is not None else "",
            log.notes or "",
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=approval-audit-logs.csv"},
    )
