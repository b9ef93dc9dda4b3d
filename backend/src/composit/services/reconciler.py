"""Callback reconciler: converges provider task outcomes into generation state.

Invoked by the webhook endpoint and by the generation worker's polling loop,
possibly concurrently and repeatedly for the same task id. Every step is
guarded so that the end state does not depend on delivery order:

1. Unknown task ids (stale, foreign or forged callbacks) are ignored.
2. A task that is already settled or already produced an output is ignored
   before anything is downloaded.
3. Outputs are unique per (generation, task) and are only recorded while the
   task link is still pending; a losing insert removes its uploaded object
   and stops.
4. The task link is settled pending → success/fail exactly once; only the
   caller that settles it increments the completion counter.
5. The counter increment is a single atomic UPDATE bounded by the total, and
   the terminal transition is conditional on status = 'processing'.
"""

import secrets
import string
import time
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError

from composit.core.timezone import utcnow
from composit.models.generation import GenerationStatus, TaskState
from composit.models.output import GenerationOutput
from composit.services.images import image_dimensions, output_extension
from composit.services.kie.client import KieClient, parse_result_urls
from composit.services.metrics import (
    generation_duration_seconds,
    generations_total,
    storage_uploads_total,
)
from composit.services.storage.supabase_storage import StorageClient

logger = structlog.get_logger(__name__)

DEFAULT_FAILURE_REASON = "Kie AI task failed"
NO_OUTPUT_REASON = "Kie AI result could not be stored"

_KEY_ALPHABET = string.ascii_lowercase + string.digits


def output_storage_key(generation_id: UUID, ext: str) -> str:
    """Unique storage key for one output, scoped under its generation."""
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(6))
    return f"generations/{generation_id}/outputs/out_{int(time.time() * 1000)}_{suffix}.{ext}"


class DuplicateOutput(Exception):
    """Another reconciliation stored the output or settled the task first."""


class CallbackReconciler:
    """Idempotent state-transition function for finished provider tasks."""

    def __init__(self, uow_factory, kie_client: KieClient, storage: StorageClient):
        self.uow_factory = uow_factory
        self.kie_client = kie_client
        self.storage = storage

    async def reconcile(
        self,
        task_id: str,
        state: str,
        result_json: str | None = None,
        fail_msg: str | None = None,
    ) -> None:
        """Apply one terminal task outcome.

        Args:
            task_id: Provider task id
            state: "success" or "fail" (anything else is ignored)
            result_json: Provider resultJson (success only)
            fail_msg: Provider failure message (fail only)
        """
        if state not in (TaskState.SUCCESS.value, TaskState.FAIL.value):
            logger.debug("reconcile.non_terminal", task_id=task_id, state=state)
            return

        async with await self.uow_factory() as uow:
            generation = await uow.generations.get_by_task_id(task_id)
            if generation is None:
                logger.info("reconcile.unknown_task", task_id=task_id)
                return

            if await uow.generations.task_state(task_id) != TaskState.PENDING:
                logger.info(
                    "reconcile.already_settled",
                    generation_id=str(generation.id),
                    task_id=task_id,
                )
                return

            if await uow.outputs.exists_for_task(generation.id, task_id):
                logger.info(
                    "reconcile.already_processed",
                    generation_id=str(generation.id),
                    task_id=task_id,
                )
                return

            await uow.job_logs.append(
                generation.id,
                "kie.callback",
                {"taskId": task_id, "state": state, "failMsg": fail_msg},
            )

        generation_id = generation.id
        started_at = generation.started_at

        if state == TaskState.FAIL.value:
            await self._count(
                generation_id,
                task_id,
                TaskState.FAIL,
                started_at,
                failure_reason=fail_msg or DEFAULT_FAILURE_REASON,
            )
            return

        urls = parse_result_urls(result_json)
        if not urls:
            logger.warning("reconcile.no_result_urls", generation_id=str(generation_id), task_id=task_id)

        stored = False
        for url in urls:
            try:
                await self._store_output(generation_id, task_id, url)
            except DuplicateOutput:
                logger.info(
                    "reconcile.duplicate_output",
                    generation_id=str(generation_id),
                    task_id=task_id,
                )
                return
            except Exception as e:
                # Per-output failures are logged and skipped
                logger.error(
                    "reconcile.output_failed",
                    generation_id=str(generation_id),
                    task_id=task_id,
                    url=url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            stored = True
            break

        await self._count(
            generation_id,
            task_id,
            TaskState.SUCCESS,
            started_at,
            failure_reason=None if stored else NO_OUTPUT_REASON,
        )

    async def _store_output(self, generation_id: UUID, task_id: str, url: str) -> None:
        """Download one result, upload it and record the output row.

        Raises:
            DuplicateOutput: If another reconciliation recorded or settled the task first
        """
        data, mime = await self.kie_client.fetch_result(url)
        storage_key = output_storage_key(generation_id, output_extension(mime))
        await self.storage.upload(storage_key, data, mime)
        storage_uploads_total.labels(kind="output").inc()

        width, height = image_dimensions(data)
        try:
            async with await self.uow_factory() as uow:
                if not await uow.generations.hold_pending_task(task_id):
                    raise DuplicateOutput(task_id)
                await uow.outputs.add(
                    GenerationOutput(
                        generation_id=generation_id,
                        task_id=task_id,
                        storage_key=storage_key,
                        mime=mime,
                        size_bytes=len(data),
                        width=width,
                        height=height,
                    )
                )
        except DuplicateOutput:
            await self.storage.delete([storage_key])
            raise
        except IntegrityError as e:
            await self.storage.delete([storage_key])
            raise DuplicateOutput(task_id) from e

        logger.info(
            "reconcile.output_stored",
            generation_id=str(generation_id),
            task_id=task_id,
            storage_key=storage_key,
        )

    async def _count(
        self,
        generation_id: UUID,
        task_id: str,
        state: TaskState,
        started_at,
        failure_reason: str | None = None,
    ) -> None:
        """Settle the task, count the variation and finalize at the total."""
        finalized: GenerationStatus | None = None
        completed_at = utcnow()

        async with await self.uow_factory() as uow:
            if not await uow.generations.settle_task(task_id, state, completed_at):
                logger.info(
                    "reconcile.already_settled",
                    generation_id=str(generation_id),
                    task_id=task_id,
                )
                return

            counters = await uow.generations.increment_done(generation_id, failure_reason)
            if counters is None:
                logger.warning(
                    "reconcile.counter_at_total",
                    generation_id=str(generation_id),
                    task_id=task_id,
                )
                return

            done, total = counters
            if done >= total:
                outputs = await uow.outputs.count_for_generation(generation_id)
                status = GenerationStatus.COMPLETED if outputs > 0 else GenerationStatus.FAILED
                if await uow.generations.finalize(generation_id, status, completed_at):
                    finalized = status

        logger.info(
            "reconcile.counted",
            generation_id=str(generation_id),
            task_id=task_id,
            state=state.value,
            variations_done=done,
            variations_total=total,
        )

        if finalized is None:
            return

        generations_total.labels(status=finalized.value).inc()
        if finalized == GenerationStatus.COMPLETED and started_at is not None:
            generation_duration_seconds.observe((completed_at - started_at).total_seconds())
        logger.info(
            "generation.finalized",
            generation_id=str(generation_id),
            status=finalized.value,
        )
