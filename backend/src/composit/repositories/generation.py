"""Generation repository for composit backend.

Provides data access methods for Generation entities, their asset links and
their provider task list.

All mutations shared between the generation worker and the callback
reconciler are single-statement conditional updates, so concurrent callers
never overwrite each other's counters.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from composit.models.asset import Asset
from composit.models.generation import (
    Generation,
    GenerationAsset,
    GenerationStatus,
    GenerationTask,
    TaskState,
)


class GenerationRepository:
    """Repository for Generation entities.

    Read paths exclude soft-deleted generations unless stated otherwise.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add_with_assets(self, generation: Generation, asset_ids: list[UUID]) -> Generation:
        """Persist a new generation together with its asset links.

        Both inserts are flushed in the caller's transaction, so the generation
        never exists without its links.

        Args:
            generation: Generation entity to persist (status queued)
            asset_ids: Assets the generation is built from

        Returns:
            Persisted generation with generated ID
        """
        self.session.add(generation)
        await self.session.flush()
        for asset_id in dict.fromkeys(asset_ids):
            self.session.add(GenerationAsset(generation_id=generation.id, asset_id=asset_id))
        await self.session.flush()
        return generation

    async def get_by_id(self, generation_id: UUID, include_deleted: bool = False) -> Generation | None:
        """Retrieve generation by UUID.

        Args:
            generation_id: Generation's unique identifier
            include_deleted: Also return soft-deleted rows (administrative paths only)

        Returns:
            Generation if found, None otherwise
        """
        stmt = select(Generation).where(Generation.id == generation_id)  # type: ignore[arg-type]
        if not include_deleted:
            stmt = stmt.where(Generation.deleted_at.is_(None))  # type: ignore[union-attr]
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_session(self, generation_id: UUID, session_id: str) -> Generation | None:
        """Retrieve a non-deleted generation owned by the given session."""
        result = await self.session.execute(
            select(Generation).where(
                Generation.id == generation_id,  # type: ignore[arg-type]
                Generation.session_id == session_id,  # type: ignore[arg-type]
                Generation.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return result.scalar_one_or_none()

    async def list_for_session(
        self, session_id: str, limit: int = 20, before: datetime | None = None
    ) -> list[Generation]:
        """Retrieve a page of a session's generations, newest first.

        Keyset pagination on created_at: pass the last item's created_at as
        `before` to fetch the next page.

        Args:
            session_id: Owning session
            limit: Maximum number of generations to return
            before: Only return generations created strictly before this time

        Returns:
            List of generations ordered by created_at descending
        """
        stmt = select(Generation).where(
            Generation.session_id == session_id,  # type: ignore[arg-type]
            Generation.deleted_at.is_(None),  # type: ignore[union-attr]
        )
        if before is not None:
            stmt = stmt.where(Generation.created_at < before)  # type: ignore[arg-type]
        result = await self.session.execute(
            stmt.order_by(Generation.created_at.desc()).limit(limit)  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_active_for_session(self, session_id: str) -> list[Generation]:
        """Retrieve every non-deleted generation of a session (force purge)."""
        result = await self.session.execute(
            select(Generation).where(
                Generation.session_id == session_id,  # type: ignore[arg-type]
                Generation.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return list(result.scalars().all())

    async def expired_before(self, cutoff: datetime) -> list[Generation]:
        """Retrieve non-deleted generations created before the retention cutoff."""
        result = await self.session.execute(
            select(Generation)
            .where(
                Generation.created_at < cutoff,  # type: ignore[arg-type]
                Generation.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .order_by(Generation.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_assets(self, generation_id: UUID) -> list[Asset]:
        """Retrieve the assets linked to a generation, oldest upload first."""
        result = await self.session.execute(
            select(Asset)
            .join(GenerationAsset, GenerationAsset.asset_id == Asset.id)  # type: ignore[arg-type]
            .where(GenerationAsset.generation_id == generation_id)  # type: ignore[arg-type]
            .order_by(Asset.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_asset_ids(self, generation_id: UUID) -> list[UUID]:
        """Retrieve the ids of the assets linked to a generation."""
        result = await self.session.execute(
            select(GenerationAsset.asset_id).where(
                GenerationAsset.generation_id == generation_id  # type: ignore[arg-type]
            )
        )
        return list(result.scalars().all())

    async def get_by_task_id(self, task_id: str) -> Generation | None:
        """Resolve the generation whose task list contains an external task id.

        Uses the unique index on generation_tasks.task_id, so the lookup does
        not scan generations.

        Args:
            task_id: Provider task id

        Returns:
            Owning non-deleted generation, or None for unknown/foreign task ids
        """
        result = await self.session.execute(
            select(Generation)
            .join(GenerationTask, GenerationTask.generation_id == Generation.id)  # type: ignore[arg-type]
            .where(
                GenerationTask.task_id == task_id,  # type: ignore[arg-type]
                Generation.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return result.scalar_one_or_none()

    async def task_ids(self, generation_id: UUID) -> list[str]:
        """Retrieve a generation's task ids in submission order."""
        result = await self.session.execute(
            select(GenerationTask.task_id)
            .where(GenerationTask.generation_id == generation_id)  # type: ignore[arg-type]
            .order_by(GenerationTask.position.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def mark_processing(self, generation_id: UUID, started_at: datetime) -> None:
        """Flip a generation to processing and stamp its start time."""
        await self.session.execute(
            update(Generation)
            .where(Generation.id == generation_id)  # type: ignore[arg-type]
            .values(status=GenerationStatus.PROCESSING, started_at=started_at, completed_at=None)
        )

    async def mark_failed(self, generation_id: UUID, reason: str, completed_at: datetime) -> None:
        """Mark generation as failed with error message.

        Args:
            generation_id: Generation to update
            reason: Error description (truncated to 1000 characters)
            completed_at: Time the failure was recorded
        """
        await self.session.execute(
            update(Generation)
            .where(Generation.id == generation_id)  # type: ignore[arg-type]
            .values(
                status=GenerationStatus.FAILED,
                failure_reason=reason[:1000],
                completed_at=completed_at,
            )
        )

    async def reset_for_submission(self, generation_id: UUID, total: int) -> None:
        """Record the variation total and zero the counter before any task exists.

        Must be committed before the first provider task is submitted, so a
        fast callback always sees the right total.
        """
        await self.session.execute(
            update(Generation)
            .where(Generation.id == generation_id)  # type: ignore[arg-type]
            .values(variations_total=total, variations_done=0, failure_reason=None)
        )

    async def append_task(self, generation_id: UUID, task_id: str, position: int) -> GenerationTask:
        """Append a submitted provider task to the generation's task list."""
        task = GenerationTask(generation_id=generation_id, task_id=task_id, position=position)
        self.session.add(task)
        await self.session.flush()
        return task

    async def clear_tasks(self, generation_id: UUID) -> None:
        """Drop a generation's task list (administrative retry)."""
        await self.session.execute(
            delete(GenerationTask).where(
                GenerationTask.generation_id == generation_id  # type: ignore[arg-type]
            )
        )

    async def task_state(self, task_id: str) -> TaskState | None:
        """Current state of a task link, or None if no generation owns the task."""
        result = await self.session.execute(
            select(GenerationTask.state).where(
                GenerationTask.task_id == task_id  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def hold_pending_task(self, task_id: str) -> bool:
        """Write-lock a task link for this transaction if it is still pending.

        Query explanation:
        - UPDATE ... SET state = state WHERE task_id = :task_id AND state = 'pending'
        - A concurrent settle_task waits for this transaction, then re-checks
          its own WHERE clause

        Returns:
            True if the task is pending and now held, False if already settled
        """
        result = await self.session.execute(
            update(GenerationTask)
            .where(
                GenerationTask.task_id == task_id,  # type: ignore[arg-type]
                GenerationTask.state == TaskState.PENDING,  # type: ignore[arg-type]
            )
            .values(state=GenerationTask.state)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def settle_task(self, task_id: str, state: TaskState, settled_at: datetime) -> bool:
        """Record a task's terminal state if nobody has yet.

        Query explanation:
        - UPDATE ... WHERE task_id = :task_id AND state = 'pending'
        - Exactly one concurrent caller sees rowcount == 1

        Args:
            task_id: Provider task id
            state: Terminal state (success or fail)
            settled_at: Time of settlement

        Returns:
            True if this call settled the task, False if it was already settled
        """
        result = await self.session.execute(
            update(GenerationTask)
            .where(
                GenerationTask.task_id == task_id,  # type: ignore[arg-type]
                GenerationTask.state == TaskState.PENDING,  # type: ignore[arg-type]
            )
            .values(state=state, settled_at=settled_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def increment_done(
        self, generation_id: UUID, failure_reason: str | None = None
    ) -> tuple[int, int] | None:
        """Atomically count one more finished variation.

        Query explanation:
        - SET variations_done = variations_done + 1 (computed by the database)
        - WHERE variations_done < variations_total (never exceeds the total)
        - RETURNING the new counter and the total

        Args:
            generation_id: Generation to update
            failure_reason: If set, also recorded as the failure reason (last one wins)

        Returns:
            (variations_done, variations_total) after the increment, or None if
            the counter was already at the total
        """
        values: dict = {"variations_done": Generation.variations_done + 1}
        if failure_reason is not None:
            values["failure_reason"] = failure_reason[:1000]

        result = await self.session.execute(
            update(Generation)
            .where(
                Generation.id == generation_id,  # type: ignore[arg-type]
                Generation.variations_done < Generation.variations_total,  # type: ignore[arg-type]
            )
            .values(**values)
            .returning(Generation.variations_done, Generation.variations_total)
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]

    async def finalize(
        self, generation_id: UUID, status: GenerationStatus, completed_at: datetime
    ) -> bool:
        """Move a processing generation to its terminal status.

        Conditional on status = 'processing', so concurrent finishers agree on
        a single transition.

        Returns:
            True if this call performed the transition
        """
        result = await self.session.execute(
            update(Generation)
            .where(
                Generation.id == generation_id,  # type: ignore[arg-type]
                Generation.status == GenerationStatus.PROCESSING,  # type: ignore[arg-type]
            )
            .values(status=status, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def save(self, generation: Generation) -> Generation:
        """Persist in-memory changes to a loaded generation."""
        self.session.add(generation)
        await self.session.flush()
        return generation

    async def count_by_status(self) -> dict[str, int]:
        """Count all generations grouped by status (administrative metrics)."""
        result = await self.session.execute(
            select(Generation.status, func.count(Generation.id)).group_by(Generation.status)  # type: ignore[arg-type]
        )
        return {status.value: count for status, count in result.all()}
