"""Repository layer tests for composit backend.

Tests focus on the logic the reconciler and retention rely on:
- Task id → generation lookup (unknown and soft-deleted generations excluded)
- Exactly-once task settlement and the bounded completion counter
- Conditional terminal transition
- Output uniqueness per (generation, task)
- Session history pagination
- Orphaned and shared asset detection

Simple CRUD operations are not tested (trust SQLAlchemy).
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from composit.core.timezone import utcnow
from composit.models.asset import Asset, AssetRole
from composit.models.generation import GenerationStatus, TaskState
from composit.models.output import GenerationOutput

from conftest import OTHER_SESSION_ID, SESSION_ID


@pytest.mark.asyncio
async def test_get_by_task_id(uow_factory, make_processing_generation):
    """Test GenerationRepository.get_by_task_id resolves only live generations.

    Scenario:
    1. Create a processing generation with tasks t-1, t-2
    2. Both task ids resolve to it; an unknown id resolves to None
    3. Soft-delete the generation; its task ids no longer resolve
    """
    generation = await make_processing_generation(["t-1", "t-2"])

    async with await uow_factory() as uow:
        assert (await uow.generations.get_by_task_id("t-1")).id == generation.id
        assert (await uow.generations.get_by_task_id("t-2")).id == generation.id
        assert await uow.generations.get_by_task_id("t-unknown") is None
        assert await uow.generations.task_ids(generation.id) == ["t-1", "t-2"]

    async with await uow_factory() as uow:
        loaded = await uow.generations.get_by_id(generation.id)
        loaded.mark_deleted(utcnow())
        await uow.generations.save(loaded)

    async with await uow_factory() as uow:
        assert await uow.generations.get_by_task_id("t-1") is None
        assert await uow.generations.get_by_id(generation.id) is None
        assert await uow.generations.get_by_id(generation.id, include_deleted=True) is not None


@pytest.mark.asyncio
async def test_settle_task_only_once(uow_factory, make_processing_generation):
    """Test GenerationRepository.settle_task succeeds for the first caller only.

    A repeated success, or a late fail after success, must not settle again.
    """
    await make_processing_generation(["t-1"])

    async with await uow_factory() as uow:
        assert await uow.generations.settle_task("t-1", TaskState.SUCCESS, utcnow()) is True

    async with await uow_factory() as uow:
        assert await uow.generations.settle_task("t-1", TaskState.SUCCESS, utcnow()) is False
        assert await uow.generations.settle_task("t-1", TaskState.FAIL, utcnow()) is False
        assert await uow.generations.settle_task("t-missing", TaskState.FAIL, utcnow()) is False


@pytest.mark.asyncio
async def test_task_state_and_hold_pending_task(uow_factory, make_processing_generation):
    """Test that a task can be held only while it is pending."""
    await make_processing_generation(["t-1"])

    async with await uow_factory() as uow:
        assert await uow.generations.task_state("t-1") == TaskState.PENDING
        assert await uow.generations.task_state("t-missing") is None
        assert await uow.generations.hold_pending_task("t-1") is True

    async with await uow_factory() as uow:
        assert await uow.generations.task_state("t-1") == TaskState.PENDING
        await uow.generations.settle_task("t-1", TaskState.FAIL, utcnow())

    async with await uow_factory() as uow:
        assert await uow.generations.task_state("t-1") == TaskState.FAIL
        assert await uow.generations.hold_pending_task("t-1") is False


@pytest.mark.asyncio
async def test_increment_done_is_bounded_by_total(uow_factory, make_processing_generation):
    """Test GenerationRepository.increment_done never exceeds variations_total.

    Scenario:
    1. Generation with two variations
    2. Two increments return (1, 2) and (2, 2)
    3. A third increment returns None and leaves the counter at 2
    """
    generation = await make_processing_generation(["t-1", "t-2"])

    async with await uow_factory() as uow:
        assert await uow.generations.increment_done(generation.id) == (1, 2)
    async with await uow_factory() as uow:
        assert await uow.generations.increment_done(generation.id, "provider said no") == (2, 2)
    async with await uow_factory() as uow:
        assert await uow.generations.increment_done(generation.id) is None

    async with await uow_factory() as uow:
        loaded = await uow.generations.get_by_id(generation.id)
        assert loaded.variations_done == 2
        assert loaded.failure_reason == "provider said no"


@pytest.mark.asyncio
async def test_finalize_transitions_once(uow_factory, make_processing_generation):
    """Test GenerationRepository.finalize only moves a processing generation."""
    generation = await make_processing_generation(["t-1"])

    async with await uow_factory() as uow:
        assert await uow.generations.finalize(generation.id, GenerationStatus.COMPLETED, utcnow())
    async with await uow_factory() as uow:
        assert not await uow.generations.finalize(generation.id, GenerationStatus.FAILED, utcnow())
        loaded = await uow.generations.get_by_id(generation.id)
        assert loaded.status == GenerationStatus.COMPLETED
        assert loaded.completed_at is not None


@pytest.mark.asyncio
async def test_output_unique_per_task(uow_factory, make_processing_generation):
    """Test the (generation_id, task_id) unique constraint on outputs.

    The second insert for the same task raises IntegrityError and the
    transaction is rolled back, leaving exactly one output.
    """
    generation = await make_processing_generation(["t-1"])

    async with await uow_factory() as uow:
        await uow.outputs.add(
            GenerationOutput(generation_id=generation.id, task_id="t-1", storage_key="k-1")
        )

    with pytest.raises(IntegrityError):
        async with await uow_factory() as uow:
            await uow.outputs.add(
                GenerationOutput(generation_id=generation.id, task_id="t-1", storage_key="k-2")
            )

    async with await uow_factory() as uow:
        assert await uow.outputs.exists_for_task(generation.id, "t-1") is True
        assert await uow.outputs.exists_for_task(generation.id, "t-2") is False
        assert await uow.outputs.count_for_generation(generation.id) == 1


@pytest.mark.asyncio
async def test_list_for_session_pages_newest_first(uow_factory, make_generation):
    """Test keyset pagination of a session's history.

    Scenario:
    1. Create three generations one minute apart, plus one for another session
    2. First page (limit 2) holds the two newest
    3. Page before the second item's created_at holds the oldest
    """
    now = utcnow()
    oldest = await make_generation(created_at=now - timedelta(minutes=3))
    middle = await make_generation(created_at=now - timedelta(minutes=2))
    newest = await make_generation(created_at=now - timedelta(minutes=1))
    await make_generation(session_id=OTHER_SESSION_ID)

    async with await uow_factory() as uow:
        first_page = await uow.generations.list_for_session(SESSION_ID, limit=2)
        assert [g.id for g in first_page] == [newest.id, middle.id]

        second_page = await uow.generations.list_for_session(
            SESSION_ID, limit=2, before=first_page[-1].created_at
        )
        assert [g.id for g in second_page] == [oldest.id]


@pytest.mark.asyncio
async def test_orphaned_and_shared_assets(uow_factory, make_generation):
    """Test asset queries used by retention.

    - An old asset linked to no generation is orphaned
    - An asset linked to another live generation is reported as in use
    """
    first = await make_generation()
    async with await uow_factory() as uow:
        asset_ids = await uow.generations.get_asset_ids(first.id)
    second = await make_generation(asset_ids=asset_ids)

    async with await uow_factory() as uow:
        orphan = await uow.assets.add(
            Asset(
                session_id=SESSION_ID,
                role=AssetRole.STYLE_REF,
                filename="ref.png",
                mime="image/png",
                size_bytes=10,
                created_at=utcnow() - timedelta(days=30),
            )
        )

    async with await uow_factory() as uow:
        orphaned = await uow.assets.orphaned_before(utcnow() - timedelta(days=24))
        assert [a.id for a in orphaned] == [orphan.id]

        shared = await uow.assets.in_use_elsewhere(asset_ids, first.id)
        assert shared == set(asset_ids)
        assert await uow.assets.in_use_elsewhere(asset_ids, second.id) == set(asset_ids)
        assert await uow.assets.in_use_elsewhere([], first.id) == set()


@pytest.mark.asyncio
async def test_get_owned_assets_filters_foreign_sessions(uow_factory, make_generation):
    generation = await make_generation()
    async with await uow_factory() as uow:
        asset_ids = await uow.generations.get_asset_ids(generation.id)

    async with await uow_factory() as uow:
        assert len(await uow.assets.get_owned(asset_ids, SESSION_ID)) == 2
        assert await uow.assets.get_owned(asset_ids, OTHER_SESSION_ID) == []
