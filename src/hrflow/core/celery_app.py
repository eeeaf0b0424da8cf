"""Celery application for periodic workflow jobs.

Redis is both broker and result backend. The beat schedule runs the
deadline escalation sweep on its own priority queue so a backlog of other
work never delays escalations.
"""

from celery import Celery
from kombu import Exchange, Queue

from hrflow.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "hrflow",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["hrflow.tasks.workflow_tasks"],
)

workflow_exchange = Exchange("workflow", type="direct")

celery_app.conf.task_queues = (
    Queue(
        "escalations",
        exchange=workflow_exchange,
        routing_key="escalations",
        queue_arguments={"x-max-priority": 5},
    ),
    Queue("workflow", exchange=workflow_exchange, routing_key="workflow"),
)
celery_app.conf.task_default_queue = "workflow"
celery_app.conf.task_default_exchange = "workflow"
celery_app.conf.task_default_routing_key = "workflow"

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # A sweep interrupted by a worker crash is simply run again
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "check-workflow-escalations": {
        "task": "hrflow.tasks.workflow_tasks.check_escalations",
        "schedule": settings.escalation_check_interval_seconds,
        "options": {"queue": "escalations"},
    },
}
