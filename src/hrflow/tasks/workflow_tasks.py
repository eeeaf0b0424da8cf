"""Workflow background tasks.

- Periodic escalation sweep over overdue approval steps
"""

from datetime import datetime
from typing import Any

from hrflow.core.config import get_settings
from hrflow.services.workflow.engine import get_workflow_engine
from hrflow.tasks.base import async_task, get_task_logger

logger = get_task_logger("workflow_tasks")


@async_task(queue="escalations")
async def check_escalations(self, now: str | None = None) -> dict[str, Any]:
    """Escalate requests whose active step deadline has passed.

    The sweep needs the shared database store; a worker with the in-memory
    store holds none of the API's requests, so the run is skipped.

    @param now - ISO-8601 sweep time (defaults to the current time)
    @returns IDs escalated on this pass
    """
    backend = get_settings().workflow_store_backend
    if backend != "database":
        logger.warning(
            f"Escalation sweep skipped: workflow_store_backend is '{backend}', "
            "set it to 'database' to share requests with the API"
        )
        return {"escalated": [], "count": 0, "skipped": True}

    sweep_time = datetime.fromisoformat(now) if now else None
    escalated = await get_workflow_engine().check_and_escalate(sweep_time)

    if escalated:
        logger.info(
            "Escalated overdue requests",
            extra={"count": len(escalated), "request_ids": escalated},
        )
    return {"escalated": escalated, "count": len(escalated)}
