"""Asset repository for composit backend.

Provides data access methods for uploaded input images.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from composit.models.asset import Asset
from composit.models.generation import Generation, GenerationAsset


class AssetRepository:
    """Repository for Asset entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, asset: Asset) -> Asset:
        """Persist new asset (placeholder storage key) to obtain its id."""
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def set_storage_key(self, asset: Asset, storage_key: str) -> None:
        """Replace the placeholder storage key once the binary is uploaded.

        Raises:
            ValueError: If storage_key is empty
        """
        if not storage_key:
            raise ValueError("storage_key cannot be empty")

        asset.storage_key = storage_key
        self.session.add(asset)
        await self.session.flush()

    async def get_owned(self, asset_ids: list[UUID], session_id: str) -> list[Asset]:
        """Retrieve the non-deleted assets among asset_ids owned by the session.

        Callers compare the result length with the request to detect foreign
        or missing ids.
        """
        if not asset_ids:
            return []
        result = await self.session.execute(
            select(Asset).where(
                Asset.id.in_(asset_ids),  # type: ignore[attr-defined]
                Asset.session_id == session_id,  # type: ignore[arg-type]
                Asset.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return list(result.scalars().all())

    async def orphaned_before(self, cutoff: datetime) -> list[Asset]:
        """Retrieve non-deleted assets older than cutoff that no generation uses."""
        linked = select(GenerationAsset.asset_id)
        result = await self.session.execute(
            select(Asset).where(
                Asset.created_at < cutoff,  # type: ignore[arg-type]
                Asset.deleted_at.is_(None),  # type: ignore[union-attr]
                Asset.id.not_in(linked),  # type: ignore[attr-defined]
            )
        )
        return list(result.scalars().all())

    async def in_use_elsewhere(self, asset_ids: list[UUID], generation_id: UUID) -> set[UUID]:
        """Ids among asset_ids still linked to another non-deleted generation."""
        if not asset_ids:
            return set()
        result = await self.session.execute(
            select(GenerationAsset.asset_id)
            .join(Generation, Generation.id == GenerationAsset.generation_id)  # type: ignore[arg-type]
            .where(
                GenerationAsset.asset_id.in_(asset_ids),  # type: ignore[attr-defined]
                GenerationAsset.generation_id != generation_id,  # type: ignore[arg-type]
                Generation.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return set(result.scalars().all())

    async def soft_delete_many(self, asset_ids: list[UUID], deleted_at: datetime) -> int:
        """Soft-delete assets by id; already-deleted rows keep their timestamp."""
        if not asset_ids:
            return 0
        result = await self.session.execute(
            update(Asset)
            .where(
                Asset.id.in_(asset_ids),  # type: ignore[attr-defined]
                Asset.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .values(deleted_at=deleted_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]
