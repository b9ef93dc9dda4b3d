"""Retention purge tests.

Tests focus on:
- Expired generations lose their storage objects and are soft-deleted
- Assets shared with a live generation survive
- Orphaned uploads older than the cutoff are purged
- A storage failure skips one generation without stopping the sweep
- Daily schedule computation
"""

from datetime import datetime, timedelta

import pytest

from composit.core.timezone import utcnow
from composit.models.asset import Asset, AssetRole
from composit.models.output import GenerationOutput
from composit.services.retention import purge_generation, run_retention_purge
from composit.workers.retention_worker import seconds_until_next_run

from conftest import SESSION_ID


async def _expired(make_generation, uow_factory, days=30, **fields):
    generation = await make_generation(created_at=utcnow() - timedelta(days=days), **fields)
    async with await uow_factory() as uow:
        await uow.outputs.add(
            GenerationOutput(
                generation_id=generation.id,
                task_id=f"t-{generation.id}",
                storage_key=f"generations/{generation.id}/outputs/out.png",
            )
        )
    return generation


@pytest.mark.asyncio
async def test_retention_purges_expired_generations(
    services, fake_storage, make_generation, uow_factory
):
    """Test a sweep over one expired and one fresh generation.

    Scenario:
    1. Generation created 30 days ago with one output and two assets
    2. Generation created today
    3. Sweep: three keys deleted, expired generation soft-deleted,
       outputs and assets soft-deleted, retention.deleted logged
    4. Fresh generation untouched
    """
    expired = await _expired(make_generation, uow_factory)
    fresh = await make_generation()

    result = await run_retention_purge(services)

    assert result.generations_deleted == 1
    assert result.keys_deleted == 3
    assert result.errors == 0
    assert f"generations/{expired.id}/outputs/out.png" in fake_storage.deleted

    async with await uow_factory() as uow:
        assert await uow.generations.get_by_id(expired.id) is None
        assert await uow.generations.get_by_id(fresh.id) is not None
        assert await uow.outputs.list_for_generation(expired.id) == []
        assets = await uow.generations.get_assets(expired.id)
        events = [entry.event for entry in await uow.job_logs.list_for_generation(expired.id)]

    assert all(asset.deleted_at is not None for asset in assets)
    assert events == ["retention.deleted"]


@pytest.mark.asyncio
async def test_shared_assets_survive_purge(services, fake_storage, make_generation, uow_factory):
    expired = await _expired(make_generation, uow_factory)
    async with await uow_factory() as uow:
        asset_ids = await uow.generations.get_asset_ids(expired.id)
    await make_generation(asset_ids=asset_ids)

    keys = await purge_generation(services, expired.id)

    assert keys == 1
    async with await uow_factory() as uow:
        assets = await uow.generations.get_assets(expired.id)
    assert all(asset.deleted_at is None for asset in assets)


@pytest.mark.asyncio
async def test_orphaned_assets_are_purged(services, fake_storage, uow_factory):
    async with await uow_factory() as uow:
        await uow.sessions.touch_or_create(SESSION_ID)
        old = await uow.assets.add(
            Asset(
                session_id=SESSION_ID,
                role=AssetRole.MODEL,
                filename="model.png",
                mime="image/png",
                size_bytes=10,
                storage_key="sessions/old/model.png",
                created_at=utcnow() - timedelta(days=40),
            )
        )
        recent = await uow.assets.add(
            Asset(
                session_id=SESSION_ID,
                role=AssetRole.MODEL,
                filename="model.png",
                mime="image/png",
                size_bytes=10,
                storage_key="sessions/recent/model.png",
            )
        )

    result = await run_retention_purge(services)

    assert result.orphaned_assets_deleted == 1
    assert fake_storage.deleted == ["sessions/old/model.png"]
    async with await uow_factory() as uow:
        owned = await uow.assets.get_owned([old.id, recent.id], SESSION_ID)
    assert [a.id for a in owned] == [recent.id]


@pytest.mark.asyncio
async def test_storage_failure_skips_generation(
    services, fake_storage, make_generation, uow_factory
):
    """Test that one failing generation is retried by the next sweep, not fatal."""
    broken = await _expired(make_generation, uow_factory, days=31)
    healthy = await _expired(make_generation, uow_factory, days=30)
    fake_storage.fail_delete_keys.add(f"generations/{broken.id}/outputs/out.png")

    result = await run_retention_purge(services)

    assert result.errors == 1
    assert result.generations_deleted == 1
    async with await uow_factory() as uow:
        assert await uow.generations.get_by_id(broken.id) is not None
        assert await uow.generations.get_by_id(healthy.id) is None


@pytest.mark.asyncio
async def test_purge_is_idempotent(services, make_generation, uow_factory):
    expired = await _expired(make_generation, uow_factory)

    await purge_generation(services, expired.id)
    async with await uow_factory() as uow:
        first = (await uow.generations.get_by_id(expired.id, include_deleted=True)).deleted_at

    assert await purge_generation(services, expired.id) == 0
    async with await uow_factory() as uow:
        again = (await uow.generations.get_by_id(expired.id, include_deleted=True)).deleted_at
    assert again == first


@pytest.mark.parametrize(
    "now, hour, expected_hours",
    [
        (datetime(2026, 3, 1, 1, 0), 2, 1),
        (datetime(2026, 3, 1, 2, 0), 2, 24),
        (datetime(2026, 3, 1, 23, 30), 2, 2.5),
    ],
)
def test_seconds_until_next_run(now, hour, expected_hours):
    assert seconds_until_next_run(now, hour) == expected_hours * 3600
