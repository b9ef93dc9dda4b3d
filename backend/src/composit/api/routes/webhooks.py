"""Kie AI webhook endpoint for task completion callbacks.

The provider posts the same payload shape as the recordInfo response:

    {"code": 200, "msg": "...", "data": {"taskId": "...", "state": "success",
     "resultJson": "{\"resultUrls\": [...]}", "failCode": null, "failMsg": null}}

The endpoint always answers 200 so the provider never retries because of
internal problems it cannot fix. Terminal states are reconciled in a
background task after the response has been sent.
"""

import json

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request

from composit.api.dependencies import get_services
from composit.services.container import Services
from composit.services.kie.client import TERMINAL_STATES

logger = structlog.get_logger()
router = APIRouter()


async def reconcile_in_background(
    services: Services,
    task_id: str,
    state: str,
    result_json: str | None,
    fail_msg: str | None,
) -> None:
    """Run the reconciler detached from the request; failures are logged only."""
    try:
        await services.reconciler.reconcile(task_id, state, result_json, fail_msg)
    except Exception as e:
        logger.error(
            "webhook.reconcile_failed",
            task_id=task_id,
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )


@router.post("/kieai")
async def receive_kie_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Receive a Kie AI task callback.

    Returns:
        {"received": true} for well-formed callbacks,
        {"received": false, "error": "..."} for malformed ones (still HTTP 200)
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("webhook.invalid_json", error=str(e))
        return {"received": False, "error": "Invalid JSON payload"}

    data = payload.get("data") if isinstance(payload, dict) else None
    task_id = data.get("taskId") if isinstance(data, dict) else None
    if not task_id or not isinstance(task_id, str):
        logger.warning("webhook.missing_task_id", payload=str(payload)[:1000])
        return {"received": False, "error": "Missing taskId"}

    state = data.get("state")  # type: ignore[union-attr]
    if state not in TERMINAL_STATES:
        logger.debug("webhook.non_terminal", task_id=task_id, state=state)
        return {"received": True}

    result_json = data.get("resultJson")  # type: ignore[union-attr]
    if isinstance(result_json, dict):
        result_json = json.dumps(result_json)
    fail_msg = data.get("failMsg")  # type: ignore[union-attr]

    logger.info("webhook.received", task_id=task_id, state=state)
    background_tasks.add_task(
        reconcile_in_background,
        services,
        task_id,
        state,
        result_json if isinstance(result_json, str) else None,
        fail_msg if isinstance(fail_msg, str) else None,
    )
    return {"received": True}
