from app.api.v1 import audit_logs, feedback_threads, work_items

__all__ = [
    "audit_logs",
    "feedback_threads",
    "work_items",
]
