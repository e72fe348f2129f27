# index_service/tasks/stage_tasks.py
from typing import Any, Dict

import structlog
from celery import Task
from celery.signals import worker_process_init, worker_process_shutdown

from index_service.core.config import settings
from index_service.core.exceptions import NoExtractableTextError
from index_service.domain.models import PipelineStage, StageJobPayload
from index_service.tasks.celery_app import celery_app

task_log = structlog.get_logger(__name__)

# 3 attempts in total, waiting 5s then 10s between them
STAGE_TASK_OPTIONS: Dict[str, Any] = dict(
    bind=True,
    autoretry_for=(Exception,),
    dont_autoretry_for=(NoExtractableTextError,),
    retry_backoff=settings.STAGE_BACKOFF_SECONDS,
    retry_backoff_max=600,
    retry_jitter=False,
    max_retries=settings.STAGE_MAX_ATTEMPTS - 1,
    acks_late=True,
)


@worker_process_init.connect(weak=False)
def init_worker_resources(**kwargs):
    from index_service.core.logging_config import setup_logging
    from index_service import dependencies

    setup_logging(role="worker")
    init_log = structlog.get_logger("index_service.tasks.worker_init")
    init_log.info("Worker process initializing resources...", signal="worker_process_init")
    dependencies.get_repository()
    dependencies.get_pipeline_client()
    init_log.info("Worker resources initialization complete.")


@worker_process_shutdown.connect(weak=False)
def close_worker_resources(**kwargs):
    from index_service import dependencies

    dependencies.shutdown()


def run_stage(task: Task, stage: PipelineStage, payload: Dict[str, Any]) -> Dict[str, Any]:
    from index_service.dependencies import get_stage_use_case

    job = StageJobPayload.model_validate(payload)
    attempt = task.request.retries + 1
    max_attempts = (task.max_retries or 0) + 1
    structlog.contextvars.bind_contextvars(task_id=str(task.request.id), stage=stage.value, doc_hash=job.doc_hash)
    try:
        task_log.info("Stage task received", attempt=f"{attempt}/{max_attempts}")
        return get_stage_use_case(stage).execute(job, attempt=attempt, max_attempts=max_attempts)
    finally:
        structlog.contextvars.clear_contextvars()


@celery_app.task(name=PipelineStage.MANIFEST.task_name, **STAGE_TASK_OPTIONS)
def manifest_task(self: Task, payload: Dict[str, Any]) -> Dict[str, Any]:
    return run_stage(self, PipelineStage.MANIFEST, payload)


@celery_app.task(name=PipelineStage.EXTRACT.task_name, **STAGE_TASK_OPTIONS)
def extract_task(self: Task, payload: Dict[str, Any]) -> Dict[str, Any]:
    return run_stage(self, PipelineStage.EXTRACT, payload)


@celery_app.task(name=PipelineStage.CHUNK.task_name, **STAGE_TASK_OPTIONS)
def chunk_task(self: Task, payload: Dict[str, Any]) -> Dict[str, Any]:
    return run_stage(self, PipelineStage.CHUNK, payload)


@celery_app.task(name=PipelineStage.EMBED.task_name, **STAGE_TASK_OPTIONS)
def embed_task(self: Task, payload: Dict[str, Any]) -> Dict[str, Any]:
    return run_stage(self, PipelineStage.EMBED, payload)


@celery_app.task(name=PipelineStage.SUMMARY.task_name, **STAGE_TASK_OPTIONS)
def summary_task(self: Task, payload: Dict[str, Any]) -> Dict[str, Any]:
    return run_stage(self, PipelineStage.SUMMARY, payload)
