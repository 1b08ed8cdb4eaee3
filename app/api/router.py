from fastapi import APIRouter

from app.api.v1 import audit_logs, feedback_threads, work_items

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(feedback_threads.router)
api_router.include_router(work_items.router)
api_router.include_router(audit_logs.router)
