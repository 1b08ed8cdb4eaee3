from app.models.audit_log import AuditEntityType, AuditLog, AuditLogRead
from app.models.feedback_thread import (
    FeedbackMessage,
    FeedbackThread,
    MessageSource,
    MessageVisibility,
    SenderType,
    ThreadStatus,
)
from app.models.work_item import (
    RiskLevel,
    TShirtSize,
    WorkItem,
    WorkItemPriority,
    WorkItemRead,
    WorkItemStatus,
    WorkItemType,
    WorkItemUpdate,
)

__all__ = [
    "AuditEntityType",
    "AuditLog",
    "AuditLogRead",
    "FeedbackMessage",
    "FeedbackThread",
    "MessageSource",
    "MessageVisibility",
    "SenderType",
    "ThreadStatus",
    "RiskLevel",
    "TShirtSize",
    "WorkItem",
    "WorkItemPriority",
    "WorkItemRead",
    "WorkItemStatus",
    "WorkItemType",
    "WorkItemUpdate",
]
