# File: index_service/services/pipeline_client.py
from typing import Optional

import redis
import structlog
from celery import Celery

from index_service.application.ports.job_queue_port import JobQueuePort
from index_service.core.config import settings
from index_service.core.metrics import JOBS_DEDUPLICATED_TOTAL
from index_service.domain.models import PipelineStage, StageJobPayload

log = structlog.get_logger(__name__)

class PipelineClient(JobQueuePort):
    """
    Producer side of the stage queues.

    Owns its own Celery app and Redis connection; callers construct one,
    pass it where needed, and `close()` it on shutdown. Dedup is a Redis
    marker per job id, set NX and cleared by the worker once the job is done.
    """

    marker_prefix = "pipeline:job:"

    def __init__(
        self,
        celery_app: Optional[Celery] = None,
        redis_client: Optional[redis.Redis] = None,
        dedup_ttl_seconds: Optional[int] = None,
    ):
        self._owns_celery = celery_app is None
        self._owns_redis = redis_client is None
        self.celery_app = celery_app or Celery(
            "index_service_producer",
            broker=settings.CELERY_BROKER_URL,
            backend=settings.CELERY_RESULT_BACKEND,
        )
        self.redis = redis_client or redis.Redis.from_url(settings.REDIS_URL)
        self.dedup_ttl_seconds = dedup_ttl_seconds or settings.JOB_DEDUP_TTL_SECONDS
        self.log = log.bind(component="PipelineClient")

    def _marker_key(self, job_id: str) -> str:
        return f"{self.marker_prefix}{job_id}"

    def enqueue(self, stage: PipelineStage, payload: StageJobPayload, job_id: str) -> bool:
        enqueue_log = self.log.bind(stage=stage.value, job_id=job_id, doc_hash=payload.doc_hash)
        if not self.redis.set(self._marker_key(job_id), stage.value, nx=True, ex=self.dedup_ttl_seconds):
            JOBS_DEDUPLICATED_TOTAL.labels(stage=stage.value).inc()
            enqueue_log.info("Stage job already pending, not resubmitting.")
            return False

        try:
            self.celery_app.send_task(
                stage.task_name,
                kwargs={"payload": payload.model_dump(mode="json")},
                queue=stage.queue_name,
                task_id=job_id,
            )
        except Exception:
            self.redis.delete(self._marker_key(job_id))
            enqueue_log.exception("Failed to submit stage job")
            raise
        enqueue_log.info("Stage job submitted.", queue=stage.queue_name)
        return True

    def release_job(self, job_id: str) -> None:
        self.redis.delete(self._marker_key(job_id))

    def close(self) -> None:
        self.log.info("Closing pipeline client.")
        if self._owns_celery:
            self.celery_app.close()
        if self._owns_redis:
            self.redis.close()
