"""Kie AI webhook endpoint tests.

Tests focus on:
- Malformed callbacks answer 200 with received=false
- Non-terminal and unknown tasks answer 200 without state changes
- Terminal callbacks are reconciled after the response
- Reconciler errors never turn into non-200 answers
"""

import json

import pytest

from composit.models.generation import GenerationStatus


def _callback(task_id, state, result_json=None, fail_msg=None) -> dict:
    return {
        "code": 200,
        "msg": "success",
        "data": {
            "taskId": task_id,
            "state": state,
            "resultJson": result_json,
            "failCode": None,
            "failMsg": fail_msg,
        },
    }


@pytest.mark.asyncio
async def test_invalid_json_is_acknowledged(client):
    response = await client.post(
        "/webhooks/kieai", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 200
    assert response.json() == {"received": False, "error": "Invalid JSON payload"}


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"data": {}}, {"data": {"state": "success"}}, []])
async def test_missing_task_id_is_acknowledged(client, payload):
    response = await client.post("/webhooks/kieai", json=payload)

    assert response.status_code == 200
    assert response.json() == {"received": False, "error": "Missing taskId"}


@pytest.mark.asyncio
async def test_non_terminal_state_is_acknowledged(client, make_processing_generation, uow_factory):
    generation = await make_processing_generation(["t-1"])

    response = await client.post("/webhooks/kieai", json=_callback("t-1", "generating"))

    assert response.json() == {"received": True}
    async with await uow_factory() as uow:
        loaded = await uow.generations.get_by_id(generation.id)
    assert loaded.variations_done == 0


@pytest.mark.asyncio
async def test_unknown_task_is_acknowledged(client, fake_storage):
    response = await client.post(
        "/webhooks/kieai", json=_callback("t-stale", "fail", fail_msg="whatever")
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert fake_storage.objects == {}


@pytest.mark.asyncio
async def test_success_callback_completes_generation(
    client, fake_kie, make_processing_generation, uow_factory
):
    """Test that a success callback stores the output and finalizes.

    Scenario:
    1. Processing generation with one task
    2. Provider posts success with resultJson as a string
    3. Generation is completed with one output (background task has run)
    4. A retried delivery of the same callback changes nothing
    """
    generation = await make_processing_generation(["t-1"])
    result_json = fake_kie.complete("t-1")

    response = await client.post("/webhooks/kieai", json=_callback("t-1", "success", result_json))
    assert response.json() == {"received": True}

    retry = await client.post("/webhooks/kieai", json=_callback("t-1", "success", result_json))
    assert retry.json() == {"received": True}

    async with await uow_factory() as uow:
        loaded = await uow.generations.get_by_id(generation.id)
        outputs = await uow.outputs.list_for_generation(generation.id)
    assert loaded.status == GenerationStatus.COMPLETED
    assert loaded.variations_done == 1
    assert len(outputs) == 1


@pytest.mark.asyncio
async def test_result_json_object_is_accepted(
    client, make_processing_generation, uow_factory
):
    generation = await make_processing_generation(["t-1"])
    payload = _callback("t-1", "success")
    payload["data"]["resultJson"] = {"resultUrls": ["https://cdn.kie.test/t-1.png"]}

    await client.post("/webhooks/kieai", content=json.dumps(payload))

    async with await uow_factory() as uow:
        assert await uow.outputs.count_for_generation(generation.id) == 1


@pytest.mark.asyncio
async def test_reconcile_errors_still_answer_200(client, services, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(services.reconciler, "reconcile", broken)

    response = await client.post("/webhooks/kieai", json=_callback("t-1", "success", "{}"))

    assert response.status_code == 200
    assert response.json() == {"received": True}
