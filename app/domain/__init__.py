from app.domain.audit_log_operations import (
    AUDIT_FILTERS,
    AuditLogFilter,
    AuditLogOperations,
    audit_log_ops,
    get_audit_filter,
)
from app.domain.feedback_thread_operations import (
    FeedbackMessageOperations,
    FeedbackThreadOperations,
    feedback_message_ops,
    feedback_thread_ops,
)
from app.domain.work_item_operations import WorkItemOperations, work_item_ops

__all__ = [
    "AUDIT_FILTERS",
    "AuditLogFilter",
    "AuditLogOperations",
    "audit_log_ops",
    "get_audit_filter",
    "FeedbackMessageOperations",
    "FeedbackThreadOperations",
    "feedback_message_ops",
    "feedback_thread_ops",
    "WorkItemOperations",
    "work_item_ops",
]
