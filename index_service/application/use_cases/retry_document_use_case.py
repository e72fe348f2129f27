from typing import Any, Dict

import structlog

from index_service.application.ports.index_repository_port import IndexRepositoryPort
from index_service.application.ports.job_queue_port import JobQueuePort
from index_service.application.ports.lock_port import BuildLockPort
from index_service.application.ports.storage_port import StoragePort
from index_service.application.progress import ProgressTracker
from index_service.application.use_cases.ensure_index_use_case import build_stage_payload
from index_service.core.config import settings
from index_service.core.exceptions import (
    DocumentNotFoundError,
    RetryNotAllowedError,
    UnprocessableDocumentError,
)
from index_service.domain.keys import stage_job_id
from index_service.domain.models import (
    ArtifactStatus,
    DocumentStatus,
    PipelineStage,
    StageJobPayload,
)

log = structlog.get_logger(__name__)


class RetryDocumentUseCase:
    """
    Resumes a failed document from the first stage whose output is missing
    in storage, instead of rebuilding from scratch.
    """

    def __init__(
        self,
        repository: IndexRepositoryPort,
        storage: StoragePort,
        job_queue: JobQueuePort,
        lock: BuildLockPort,
        progress: ProgressTracker,
    ):
        self.repository = repository
        self.storage = storage
        self.job_queue = job_queue
        self.lock = lock
        self.progress = progress
        self.log = log.bind(component="RetryDocumentUseCase")

    def resume_stage(self, payload: StageJobPayload) -> PipelineStage:
        storage = payload.storage
        checks = (
            (PipelineStage.MANIFEST, storage.manifest_key),
            (PipelineStage.EXTRACT, storage.extracted_key),
            (PipelineStage.CHUNK, storage.chunks_key),
            (PipelineStage.EMBED, storage.embedding_meta_key),
        )
        for stage, produced_by_stage in checks:
            if not self.storage.object_exists(storage.bucket, produced_by_stage):
                return stage
        return PipelineStage.SUMMARY

    def execute(self, org_id: str, tender_id: str, doc_hash: str) -> Dict[str, Any]:
        document = self.repository.get_document(tender_id, doc_hash)
        if document is None or document.org_id != org_id:
            raise DocumentNotFoundError(f"Document {doc_hash} not found in tender {tender_id}")
        if document.status != DocumentStatus.FAILED:
            raise RetryNotAllowedError(f"Document {doc_hash} is {document.status.value}, only failed documents can be retried")
        # A failed document with a BUILDING artifact is between queue retries
        artifact = self.repository.get_artifact(doc_hash)
        if artifact is None or artifact.status != ArtifactStatus.FAILED:
            raise RetryNotAllowedError(f"Document {doc_hash} still has a build in progress")
        if not document.storage_bucket or not document.storage_key:
            raise UnprocessableDocumentError(f"Document {doc_hash} has no storage location")

        version = settings.INDEX_ARTIFACT_VERSION
        payload = build_stage_payload(document, version)
        stage = self.resume_stage(payload)
        job_id = stage_job_id(tender_id, doc_hash, stage)

        if not self.lock.acquire(doc_hash, settings.LOCK_TTL_SECONDS):
            raise RetryNotAllowedError(f"Document {doc_hash} is locked by another build")
        self.job_queue.release_job(job_id)

        self.repository.upsert_artifact(
            doc_hash=doc_hash, org_id=org_id, tender_id=tender_id,
            status=ArtifactStatus.BUILDING, version=version,
        )
        self.repository.update_document(document.id, stage.in_progress_status)
        snapshot = self.progress.reset(doc_hash, message=f"Resuming at {stage.value}")
        self.job_queue.enqueue(stage, payload, job_id)

        self.log.info("Failed document resumed", doc_hash=doc_hash, stage=stage.value)
        return {"doc_hash": doc_hash, "stage": stage, "progress": snapshot}
