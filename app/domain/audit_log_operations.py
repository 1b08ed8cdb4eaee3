"""Domain operations for the append-only audit log."""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditEntityType, AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditLogFilter:
    """Named view over the audit log.

    Empty ``entity_types`` / ``actions`` mean "any". ``matches`` and ``apply``
    share the same definition, so in-memory checks and SQL agree.
    """

    name: str
    entity_types: frozenset[str] = frozenset()
    actions: frozenset[str] = frozenset()

    def matches(self, entity_type: str, action: str) -> bool:
        if self.entity_types and entity_type not in self.entity_types:
            return False
        if self.actions and action not in self.actions:
            return False
        return True

    def apply(self, statement: Select) -> Select:
        if self.entity_types:
            statement = statement.where(AuditLog.entity_type.in_(sorted(self.entity_types)))  # type: ignore[attr-defined]
        if self.actions:
            statement = statement.where(AuditLog.action.in_(sorted(self.actions)))  # type: ignore[attr-defined]
        return statement


AUDIT_FILTERS: dict[str, AuditLogFilter] = {
    "all": AuditLogFilter(name="all"),
    "pipeline": AuditLogFilter(
        name="pipeline",
        entity_types=frozenset({AuditEntityType.THREAD.value}),
        actions=frozenset(
            {
                "threadstate_updated",
                "threadstate_update_failed",
                "gatekeeper_decided",
                "ai_asked_questions",
            }
        ),
    ),
    "workitem": AuditLogFilter(
        name="workitem",
        entity_types=frozenset({AuditEntityType.WORK_ITEM.value}),
    ),
    "errors": AuditLogFilter(
        name="errors",
        actions=frozenset({"threadstate_update_failed", "workitem_generation_failed"}),
    ),
}


def get_audit_filter(name: str) -> AuditLogFilter:
    """Look up a named filter. Raises KeyError for unknown names."""
    return AUDIT_FILTERS[name]


class AuditLogOperations:
    """Append and query operations. Entries are never updated or deleted."""

    async def create(
        self,
        db: AsyncSession,
        entity_type: AuditEntityType,
        entity_id: uuid_pkg.UUID,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Append one audit entry."""
        entry = AuditLog(
            entity_type=entity_type.value,
            entity_id=entity_id,
            action=action,
            details=details or {},
        )
        db.add(entry)
        await db.flush()
        logger.debug(f"Audit {entity_type.value}:{entity_id} {action}")
        return entry

    async def get_by_entity(
        self,
        db: AsyncSession,
        entity_type: AuditEntityType,
        entity_id: uuid_pkg.UUID,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Entries for one entity, newest first."""
        statement = (
            select(AuditLog)
            .where(
                AuditLog.entity_type == entity_type.value,
                AuditLog.entity_id == entity_id,
            )
            .order_by(AuditLog.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def list_recent(
        self,
        db: AsyncSession,
        audit_filter: AuditLogFilter = AUDIT_FILTERS["all"],
        skip: int = 0,
        limit: int = 50,
    ) -> list[AuditLog]:
        """Recent entries matching a named filter, newest first."""
        statement = audit_filter.apply(select(AuditLog))
        statement = (
            statement.order_by(AuditLog.created_at.desc())  # type: ignore[attr-defined]
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())


audit_log_ops = AuditLogOperations()
