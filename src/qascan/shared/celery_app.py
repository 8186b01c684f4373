"""Celery application for scan tasks.

Scans are delivered at least once: a task is acknowledged only after it
returns, and one whose worker dies mid-scan goes back to the broker.
"""

from __future__ import annotations

import math

from celery import Celery
from kombu import Queue

from qascan.config import load_config
from qascan.schemas.config import RuntimeConfig

SCAN_TASK_NAME = "qascan.worker.run_scan"

# Hard kill on top of ``timeouts.task``; the task's own timeout fires first.
TIME_LIMIT_GRACE_SECONDS = 60


def create_celery_app(config: RuntimeConfig | None = None) -> Celery:
    """
    Create and configure the Celery application.

    Every scan runs on one queue (``queue.queue_name``, default
    ``scan.pipeline``). With ``queue.always_eager`` tasks run in the
    calling process instead of being published to the broker.
    """
    config = config or load_config()
    settings = config.queue

    celery_app = Celery(
        "qascan",
        broker=settings.broker_url,
        backend=settings.result_backend or None,
        include=["qascan.worker"],
    )

    celery_app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_ignore_result=not settings.result_backend,
        task_time_limit=math.ceil(config.timeouts.task) + TIME_LIMIT_GRACE_SECONDS,

        task_routes={SCAN_TASK_NAME: {"queue": settings.queue_name}},
        task_queues=(Queue(settings.queue_name),),
        task_default_queue=settings.queue_name,

        # A scan holds a browser and several API calls; take one at a time.
        worker_prefetch_multiplier=1,

        task_acks_late=True,
        task_reject_on_worker_lost=True,
        broker_connection_retry_on_startup=True,

        task_always_eager=settings.always_eager,
    )
    return celery_app


celery_app = create_celery_app()
