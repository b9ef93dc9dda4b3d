"""GenerationOutput repository for composit backend.

Provides data access methods for GenerationOutput entities, including the
per-task existence check that makes callback reconciliation idempotent.
"""

from collections import defaultdict
from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from composit.models.generation import Generation
from composit.models.output import GenerationOutput


class GenerationOutputRepository:
    """Repository for GenerationOutput entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, output: GenerationOutput) -> GenerationOutput:
        """Persist new output to database.

        Raises:
            IntegrityError: If an output already exists for (generation_id, task_id)
        """
        self.session.add(output)
        await self.session.flush()
        return output

    async def exists_for_task(self, generation_id: UUID, task_id: str) -> bool:
        """Check if a task has already produced an output (duplicate detection).

        Args:
            generation_id: Owning generation
            task_id: Provider task id

        Returns:
            True if an output row exists, False otherwise
        """
        result = await self.session.execute(
            select(
                exists().where(
                    GenerationOutput.generation_id == generation_id,  # type: ignore[arg-type]
                    GenerationOutput.task_id == task_id,  # type: ignore[arg-type]
                )
            )
        )
        return result.scalar()  # type: ignore[return-value]

    async def count_for_generation(self, generation_id: UUID) -> int:
        """Count a generation's outputs, deleted or not."""
        result = await self.session.execute(
            select(func.count(GenerationOutput.id)).where(  # type: ignore[arg-type]
                GenerationOutput.generation_id == generation_id  # type: ignore[arg-type]
            )
        )
        return result.scalar() or 0

    async def list_for_generation(
        self, generation_id: UUID, include_deleted: bool = False
    ) -> list[GenerationOutput]:
        """Retrieve a generation's outputs, oldest first."""
        stmt = select(GenerationOutput).where(
            GenerationOutput.generation_id == generation_id  # type: ignore[arg-type]
        )
        if not include_deleted:
            stmt = stmt.where(GenerationOutput.deleted_at.is_(None))  # type: ignore[union-attr]
        result = await self.session.execute(
            stmt.order_by(GenerationOutput.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_for_generations(
        self, generation_ids: list[UUID]
    ) -> dict[UUID, list[GenerationOutput]]:
        """Retrieve non-deleted outputs for several generations, grouped by generation."""
        grouped: dict[UUID, list[GenerationOutput]] = defaultdict(list)
        if not generation_ids:
            return grouped
        result = await self.session.execute(
            select(GenerationOutput)
            .where(
                GenerationOutput.generation_id.in_(generation_ids),  # type: ignore[attr-defined]
                GenerationOutput.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .order_by(GenerationOutput.created_at.asc())  # type: ignore[attr-defined]
        )
        for output in result.scalars().all():
            grouped[output.generation_id].append(output)
        return grouped

    async def get_for_session(self, output_id: UUID, session_id: str) -> GenerationOutput | None:
        """Retrieve a non-deleted output whose generation belongs to the session."""
        result = await self.session.execute(
            select(GenerationOutput)
            .join(Generation, Generation.id == GenerationOutput.generation_id)  # type: ignore[arg-type]
            .where(
                GenerationOutput.id == output_id,  # type: ignore[arg-type]
                GenerationOutput.deleted_at.is_(None),  # type: ignore[union-attr]
                Generation.session_id == session_id,  # type: ignore[arg-type]
                Generation.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return result.scalar_one_or_none()

    async def soft_delete_for_generation(self, generation_id: UUID, deleted_at: datetime) -> int:
        """Soft-delete every live output of a generation.

        Returns:
            Number of outputs marked deleted
        """
        result = await self.session.execute(
            update(GenerationOutput)
            .where(
                GenerationOutput.generation_id == generation_id,  # type: ignore[arg-type]
                GenerationOutput.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .values(deleted_at=deleted_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]
