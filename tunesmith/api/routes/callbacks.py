"""
Tunesmith Provider Callback Routes
Completion callbacks pushed by providers
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from ..dependencies import ServiceContainer, get_services
from ...core.logging import provider_logger
from ...database.repositories.generation_repository import GenerationRepository
from ...services.payloads import COMPLETED, FAILED, parse_suno_callback

router = APIRouter()


@router.post("/suno")
async def suno_callback(
    request: Request,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Receive a Suno generation callback.

    Completion and failure callbacks go through the same path as polling,
    so a callback racing a poll tick saves each take once. Unknown tasks
    still get a 200 so Suno does not resend.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON in callback body")

    external_task_id, status = parse_suno_callback(body)
    if not external_task_id:
        raise HTTPException(status_code=400, detail="Invalid callback: missing task_id")

    provider_logger.log_request("suno", "callback", task_id=external_task_id, stage=status.raw_status)

    async with services.session_factory() as session:
        task = (await GenerationRepository(session).find_by_external_id(external_task_id, "suno")).unwrap()

    if task is None:
        provider_logger.logger.warning("Callback for unknown task", provider="suno", task_id=external_task_id)
        return {"status": "received", "warning": f"Generation not found for task_id: {external_task_id}"}

    if task.is_terminal or status.state not in (COMPLETED, FAILED):
        return {"status": "received", "task_status": task.status}

    state = await services.scheduler.handle_status(task, status)
    return {"status": "received", "task_status": state.value if state else task.status}
