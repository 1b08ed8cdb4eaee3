from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import ValidationError
from app.domain import AUDIT_FILTERS, audit_log_ops

router = APIRouter(prefix="/audit-logs", tags=["audit logs"])


@router.get("", response_model=list[dict])
async def list_audit_logs(
    filter: str = Query("all", description="all | pipeline | workitem | errors"),
    skip: int = 0,
    limit: int = Query(50, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Recent audit entries, newest first."""
    audit_filter = AUDIT_FILTERS.get(filter)
    if audit_filter is None:
        raise ValidationError(f"Unknown filter '{filter}'. Use one of: {', '.join(AUDIT_FILTERS)}")

    entries = await audit_log_ops.list_recent(db, audit_filter, skip=skip, limit=limit)
    return [
        {
            "id": str(e.id),
            "entity_type": e.entity_type,
            "entity_id": str(e.entity_id),
            "action": e.action,
            "details": e.details or {},
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
