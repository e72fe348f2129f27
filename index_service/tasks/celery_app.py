# index_service/tasks/celery_app.py
from celery import Celery

from index_service.core.config import settings
from index_service.domain.models import PipelineStage


def create_celery_app() -> Celery:
    app = Celery(
        "index_service",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=["index_service.tasks.stage_tasks"],
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_hijack_root_logger=False,
        task_routes={stage.task_name: {"queue": stage.queue_name} for stage in PipelineStage},
    )
    return app


# Worker-side app, referenced by `celery -A index_service.tasks.celery_app worker`
celery_app = create_celery_app()
