"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from composit.models.generation import Generation

from conftest import SESSION_ID


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Test that UoW commits changes when exiting successfully.

    Changes made within the context should persist after the context exits.
    """
    async with await uow_factory() as uow:
        await uow.sessions.touch_or_create(SESSION_ID, user_agent="pytest")

    async with await uow_factory() as uow:
        found = await uow.sessions.get_by_id(SESSION_ID)
        assert found is not None
        assert found.user_agent == "pytest"
        assert found.last_active_at is None


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Test that UoW rolls back changes when an exception occurs.

    If an exception is raised within the context:
    1. Changes should be rolled back
    2. Exception should propagate (not be swallowed)
    """
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.sessions.touch_or_create(SESSION_ID)
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.sessions.get_by_id(SESSION_ID) is None, "Session should not exist after rollback"


@pytest.mark.asyncio
async def test_uow_provides_all_repositories(uow_factory):
    """Test that UoW provides access to all 6 repositories."""
    async with await uow_factory() as uow:
        for name in ("sessions", "assets", "generations", "outputs", "job_logs", "queue_jobs"):
            assert getattr(uow, name) is not None


@pytest.mark.asyncio
async def test_uow_atomic_multi_repository_operation(uow_factory):
    """Test that operations across multiple repositories are atomic.

    Session, generation and job log entry commit together or not at all.
    """
    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            await uow.sessions.touch_or_create(SESSION_ID)
            generation = await uow.generations.add_with_assets(
                Generation(session_id=SESSION_ID, prompt="p"), []
            )
            await uow.job_logs.append(generation.id, "job.queued", {})
            raise RuntimeError("abort")

    async with await uow_factory() as uow:
        assert await uow.sessions.get_by_id(SESSION_ID) is None
        assert await uow.generations.list_for_session(SESSION_ID) == []

    async with await uow_factory() as uow:
        await uow.sessions.touch_or_create(SESSION_ID)
        generation = await uow.generations.add_with_assets(
            Generation(session_id=SESSION_ID, prompt="p"), []
        )
        await uow.job_logs.append(generation.id, "job.queued", {})

    async with await uow_factory() as uow:
        logs = await uow.job_logs.list_for_generation(generation.id)
        assert [entry.event for entry in logs] == ["job.queued"]
