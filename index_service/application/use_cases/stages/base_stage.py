import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict

import structlog

from index_service.application.ports.index_repository_port import IndexRepositoryPort
from index_service.application.ports.job_queue_port import JobQueuePort
from index_service.application.ports.lock_port import BuildLockPort
from index_service.application.ports.storage_port import StoragePort
from index_service.application.progress import ProgressTracker
from index_service.core.exceptions import NoExtractableTextError
from index_service.core.metrics import STAGE_DURATION_SECONDS, STAGE_JOBS_TOTAL
from index_service.domain.keys import stage_job_id
from index_service.domain.models import (
    ArtifactStatus,
    DocumentStatus,
    PipelineStage,
    ProgressPhase,
    StageJobPayload,
)

log = structlog.get_logger(__name__)

# Failures that no amount of retrying will fix
TERMINAL_ERRORS = (NoExtractableTextError,)


@dataclass
class StageOutcome:
    """What a stage hands to the next one: payload metrics and document columns to update."""
    metrics: Dict[str, Any] = field(default_factory=dict)
    document_fields: Dict[str, Any] = field(default_factory=dict)


class PipelineStageUseCase(ABC):
    """
    One pipeline stage: read inputs from storage, write one output, advance
    the document, enqueue the next stage.

    Any exception marks the document failed and is re-raised so the queue's
    retry policy decides what happens next. On the last attempt the artifact
    is marked FAILED, progress goes to `failed` and the build lock is freed.
    """

    stage: PipelineStage

    def __init__(
        self,
        repository: IndexRepositoryPort,
        storage: StoragePort,
        job_queue: JobQueuePort,
        progress: ProgressTracker,
        lock: BuildLockPort,
    ):
        self.repository = repository
        self.storage = storage
        self.job_queue = job_queue
        self.progress = progress
        self.lock = lock
        self.log = log.bind(component=type(self).__name__)

    @abstractmethod
    def process(self, payload: StageJobPayload, stage_log: Any) -> StageOutcome:
        raise NotImplementedError

    def execute(self, payload: StageJobPayload, attempt: int = 1, max_attempts: int = 1) -> Dict[str, Any]:
        stage_log = self.log.bind(
            stage=self.stage.value,
            doc_hash=payload.doc_hash,
            document_id=payload.document_id,
            attempt=f"{attempt}/{max_attempts}",
        )
        stage_log.info("Stage started")
        start_time = time.perf_counter()
        try:
            outcome = self.process(payload, stage_log)
            self._hand_off(payload, outcome, stage_log)
        except Exception as e:
            terminal = isinstance(e, TERMINAL_ERRORS) or attempt >= max_attempts
            self._record_failure(payload, e, terminal, stage_log)
            STAGE_JOBS_TOTAL.labels(stage=self.stage.value, status="failed" if terminal else "retrying").inc()
            raise
        finally:
            STAGE_DURATION_SECONDS.labels(stage=self.stage.value).observe(time.perf_counter() - start_time)

        self.job_queue.release_job(stage_job_id(payload.tender_id, payload.doc_hash, self.stage))
        STAGE_JOBS_TOTAL.labels(stage=self.stage.value, status="success").inc()
        stage_log.info("Stage completed", **outcome.metrics)
        return outcome.metrics

    def _hand_off(self, payload: StageJobPayload, outcome: StageOutcome, stage_log: Any) -> None:
        next_stage = self.stage.next_stage
        if next_stage is None:
            return
        self.repository.update_document(
            payload.document_id, next_stage.in_progress_status, **outcome.document_fields
        )
        next_payload = payload.model_copy(update=outcome.metrics)
        job_id = stage_job_id(payload.tender_id, payload.doc_hash, next_stage)
        submitted = self.job_queue.enqueue(next_stage, next_payload, job_id)
        stage_log.debug("Next stage handed off", next_stage=next_stage.value, submitted=submitted)

    def _record_failure(self, payload: StageJobPayload, error: Exception, terminal: bool, stage_log: Any) -> None:
        message = str(error) or type(error).__name__
        stage_log.error("Stage failed", error=message, terminal=terminal, exc_info=True)
        try:
            self.repository.update_document(payload.document_id, DocumentStatus.FAILED, error=message)
        except Exception as db_err:
            stage_log.error("Could not record failure on document", error=str(db_err))

        if not terminal:
            return
        try:
            self.repository.set_artifact_status(payload.doc_hash, ArtifactStatus.FAILED)
            current = self.progress.read_progress(payload.doc_hash)
            self.progress.advance(payload.doc_hash, ProgressPhase.FAILED, current.percent, message=message[:200])
        except Exception as bookkeeping_err:
            stage_log.error("Could not record terminal failure state", error=str(bookkeeping_err))
        finally:
            self.lock.release(payload.doc_hash)
            self.job_queue.release_job(stage_job_id(payload.tender_id, payload.doc_hash, self.stage))
