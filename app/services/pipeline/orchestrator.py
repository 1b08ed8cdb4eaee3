"""
Ingest orchestrator: entry point for running the pipeline on a new message.

Synchronous mode runs the pipeline and returns its result. Async mode
flags the thread as AI-processing right away, then runs the pipeline after
a per-thread debounce window so bursts of messages cost one LLM round.
Debounced runs for the same thread are serialized by a per-thread lock.
"""

import asyncio
import logging
import uuid as uuid_pkg
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.core.database import async_session_maker
from app.domain.feedback_thread_operations import feedback_message_ops, feedback_thread_ops
from app.models.feedback_thread import MessageSource, MessageVisibility, SenderType
from app.schemas.thread_state import ThreadState
from app.services.llm.client import CompletionClient
from app.services.pipeline.debounce import DebounceScheduler
from app.services.pipeline.executor import (
    IngestPipelineResult,
    LocalPipelineExecutor,
    PipelineExecutor,
    RemotePipelineExecutor,
)
from app.services.pipeline.remote import RemoteJobClient
from app.services.pipeline.thread_state import ThreadStateMerger
from app.services.pipeline.work_item_generator import WorkItemGenerator

logger = logging.getLogger(__name__)

SUGGESTION_MESSAGE_TYPE = "system_workitem_suggestion"


class IngestOrchestrator:
    """Runs the ingest pipeline through a configured executor."""

    def __init__(
        self,
        executor: PipelineExecutor,
        debouncer: DebounceScheduler | None = None,
        session_maker: Any = async_session_maker,
        system_sender_name: str = "Feedback Loop AI",
    ):
        self.executor = executor
        self.debouncer = debouncer or DebounceScheduler()
        self.session_maker = session_maker
        self.system_sender_name = system_sender_name
        self._run_locks: dict[uuid_pkg.UUID, asyncio.Lock] = {}
        self._run_users: dict[uuid_pkg.UUID, int] = {}

    async def run_ingest_pipeline(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        current_state: ThreadState,
        message_text: str,
        metadata: dict[str, Any] | None = None,
    ) -> IngestPipelineResult:
        """
        Run merge -> gate -> (generate) now and return the outcome.

        Raises:
            RemoteJobError: Remote mode only, when the job fails or times out
        """
        result = await self.executor.run(
            db, thread_id, current_state, message_text, metadata or {}
        )
        if result.work_item:
            await self._post_suggestion(db, thread_id, result)
        return result

    async def run_ingest_pipeline_async(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        message_text: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Flag the thread as processing and schedule a debounced pipeline run.

        A newer message for the same thread inside the window replaces this
        one; only the last message is processed.
        """
        await feedback_thread_ops.set_ai_processing(db, thread_id)
        await db.commit()

        self.debouncer.schedule(
            thread_id,
            lambda: self._run_debounced(thread_id, message_text, metadata or {}),
        )
        logger.debug(
            f"[pipeline] Scheduled run for thread {thread_id} "
            f"in {self.debouncer.window_seconds:g}s"
        )

    async def _run_debounced(
        self,
        thread_id: uuid_pkg.UUID,
        message_text: str,
        metadata: dict[str, Any],
    ) -> None:
        """Run one debounced ingest. Runs for the same thread never overlap."""
        lock = self._run_locks.setdefault(thread_id, asyncio.Lock())
        self._run_users[thread_id] = self._run_users.get(thread_id, 0) + 1
        try:
            async with lock:
                await self._run_serialized(thread_id, message_text, metadata)
        finally:
            self._run_users[thread_id] -= 1
            if not self._run_users[thread_id]:
                del self._run_users[thread_id]
                del self._run_locks[thread_id]

    async def _run_serialized(
        self,
        thread_id: uuid_pkg.UUID,
        message_text: str,
        metadata: dict[str, Any],
    ) -> None:
        async with self.session_maker() as db:
            try:
                thread = await feedback_thread_ops.get(db, thread_id)
                if thread is None:
                    logger.warning(f"[pipeline] Thread {thread_id} no longer exists, skipping")
                    return
                current = ThreadState.from_document(thread.thread_state)
                await self.run_ingest_pipeline(db, thread_id, current, message_text, metadata)
            except Exception:
                logger.exception(f"[pipeline] Async ingest failed for thread {thread_id}")
                await db.rollback()
            finally:
                # A newer run may be pending or queued on the lock; it owns the flag now
                queued = self._run_users[thread_id] > 1
                if not queued and not self.debouncer.is_pending(thread_id):
                    await feedback_thread_ops.clear_ai_processing(db, thread_id)
                    await db.commit()

    async def _post_suggestion(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        result: IngestPipelineResult,
    ) -> None:
        """Leave an internal note on the thread pointing at the new work item."""
        assert result.work_item is not None
        text = (
            f'AI suggested a work item: "{result.gatekeeper.reason}". '
            "Check the Work Items board for details."
        )
        try:
            await feedback_message_ops.create(
                db,
                thread_id,
                {
                    "source": MessageSource.API.value,
                    "sender_type": SenderType.INTERNAL.value,
                    "sender_name": self.system_sender_name,
                    "visibility": MessageVisibility.INTERNAL.value,
                    "raw_text": text,
                    "metadata_json": {
                        "type": SUGGESTION_MESSAGE_TYPE,
                        "workItemPublicId": result.work_item.public_id,
                    },
                },
            )
            await db.commit()
        except SQLAlchemyError:
            logger.exception(f"[pipeline] Could not post suggestion message on thread {thread_id}")
            await db.rollback()

    async def shutdown(self) -> None:
        """Drop pending debounce timers and wait for runs already started."""
        self.debouncer.cancel_all()
        await self.debouncer.wait_idle()


def build_orchestrator(config: Settings = settings) -> IngestOrchestrator:
    """Pick the executor from configuration: remote job service when enabled, else local."""
    executor: PipelineExecutor
    if config.llm_service_enabled:
        executor = RemotePipelineExecutor(RemoteJobClient.from_settings(config))
        logger.info(f"[pipeline] Using remote job service at {config.llm_service_url}")
    else:
        client = CompletionClient.from_settings(config)
        executor = LocalPipelineExecutor(
            ThreadStateMerger(client),
            WorkItemGenerator(client),
            threshold=config.gatekeeper_confidence_threshold,
        )
        logger.info(f"[pipeline] Using LLM endpoint {client.endpoint}")

    return IngestOrchestrator(
        executor,
        debouncer=DebounceScheduler(config.ingest_debounce_seconds),
        system_sender_name=config.system_sender_name,
    )


_orchestrator: IngestOrchestrator | None = None


def get_orchestrator() -> IngestOrchestrator:
    """Process-wide orchestrator (one debounce map per process)."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


async def shutdown_orchestrator() -> None:
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.shutdown()
        _orchestrator = None
