import posixpath
from typing import Optional

import structlog

from index_service.application.ports.index_repository_port import IndexRepositoryPort
from index_service.application.ports.job_queue_port import JobQueuePort
from index_service.application.ports.lock_port import BuildLockPort
from index_service.application.progress import ProgressTracker
from index_service.core.config import settings
from index_service.core.exceptions import DocumentNotFoundError, UnprocessableDocumentError
from index_service.core.metrics import ENSURE_INDEX_TOTAL
from index_service.domain.keys import document_base_path, stage_job_id
from index_service.domain.models import (
    ArtifactStatus,
    DocumentRecord,
    EnsureIndexResult,
    EnsureIndexStatus,
    IndexProgressSnapshot,
    PipelineStage,
    ProgressPhase,
    StageJobPayload,
    StorageLocators,
)

log = structlog.get_logger(__name__)


def is_non_indexable(document: DocumentRecord) -> bool:
    mime = (document.mime_type or "").lower()
    if any(mime.startswith(prefix) for prefix in settings.NON_INDEXABLE_MIME_PREFIXES):
        return True
    ext = posixpath.splitext((document.title or "").lower())[1]
    return ext in settings.NON_INDEXABLE_EXTENSIONS


def build_stage_payload(document: DocumentRecord, artifact_version: int) -> StageJobPayload:
    return StageJobPayload(
        org_id=document.org_id,
        tender_id=document.tender_id,
        document_id=document.id,
        doc_hash=document.doc_hash,
        filename=document.title or posixpath.basename(document.storage_key or "") or document.doc_hash,
        mime_type=document.mime_type,
        storage=StorageLocators(
            bucket=document.storage_bucket,
            raw_key=document.storage_key,
            base_path=document_base_path(document.org_id, document.tender_id, document.doc_hash),
            index_bucket=settings.INDEX_BUCKET_NAME,
        ),
        artifact_version=artifact_version,
    )


class EnsureIndexUseCase:
    """
    Entry point for "make sure this document has an index".

    Answers READY, BUILDING or ENQUEUED. Never starts a second pipeline run
    for a doc_hash that already has one in flight, unless forced.
    """

    def __init__(
        self,
        repository: IndexRepositoryPort,
        job_queue: JobQueuePort,
        lock: BuildLockPort,
        progress: ProgressTracker,
    ):
        self.repository = repository
        self.job_queue = job_queue
        self.lock = lock
        self.progress = progress
        self.log = log.bind(component="EnsureIndexUseCase")

    def execute(self, org_id: str, tender_id: str, doc_hash: str, force_rebuild: bool = False) -> EnsureIndexResult:
        use_case_log = self.log.bind(org_id=org_id, tender_id=tender_id, doc_hash=doc_hash, force_rebuild=force_rebuild)

        document = self.repository.get_document(tender_id, doc_hash)
        if document is None or document.org_id != org_id:
            raise DocumentNotFoundError(f"Document {doc_hash} not found in tender {tender_id}")

        version = settings.INDEX_ARTIFACT_VERSION

        # 1. Imágenes y otros medios: se guardan, nunca se indexan
        if is_non_indexable(document):
            artifact = self.repository.upsert_artifact(
                doc_hash=doc_hash, org_id=org_id, tender_id=tender_id,
                status=ArtifactStatus.READY, version=version,
                total_chunks=0, total_pages=0, bytes_approx=document.bytes,
            )
            snapshot = self.progress.write_progress(
                doc_hash, IndexProgressSnapshot.build(doc_hash, ProgressPhase.READY, 100, message="Not indexable")
            )
            use_case_log.info("Non-indexable media, artifact marked READY without a build", mime_type=document.mime_type)
            return self._result(EnsureIndexStatus.READY, doc_hash, artifact, snapshot)

        if not document.storage_bucket or not document.storage_key:
            raise UnprocessableDocumentError(f"Document {doc_hash} has no storage location")

        # 2. Idempotent short-circuit
        existing = self.repository.get_artifact(doc_hash)
        if existing is not None and existing.status == ArtifactStatus.READY and not force_rebuild:
            use_case_log.debug("Artifact already READY")
            return self._result(EnsureIndexStatus.READY, doc_hash, existing)

        # 3. Mark as building, resetting counters from any previous build
        artifact = self.repository.upsert_artifact(
            doc_hash=doc_hash, org_id=org_id, tender_id=tender_id,
            status=ArtifactStatus.BUILDING, version=version,
            total_chunks=0, total_pages=0, bytes_approx=document.bytes,
        )

        # 4. Build lock
        first_job_id = stage_job_id(tender_id, doc_hash, PipelineStage.MANIFEST)
        if force_rebuild:
            self.lock.release(doc_hash)
            self.job_queue.release_job(first_job_id)
        if not self.lock.acquire(doc_hash, settings.LOCK_TTL_SECONDS):
            use_case_log.info("Build already in progress, not enqueuing")
            return self._result(EnsureIndexStatus.BUILDING, doc_hash, artifact, self.progress.read_progress(doc_hash))

        # 5. Fresh progress, then enqueue the first stage
        snapshot = self.progress.reset(doc_hash, message="Queued")
        payload = build_stage_payload(document, version)
        try:
            self.job_queue.enqueue(PipelineStage.MANIFEST, payload, first_job_id)
        except Exception:
            self.lock.release(doc_hash)
            raise
        use_case_log.info("Index build enqueued", job_id=first_job_id)
        return self._result(EnsureIndexStatus.ENQUEUED, doc_hash, artifact, snapshot)

    @staticmethod
    def _result(
        status: EnsureIndexStatus,
        doc_hash: str,
        artifact=None,
        progress: Optional[IndexProgressSnapshot] = None,
    ) -> EnsureIndexResult:
        ENSURE_INDEX_TOTAL.labels(status=status.value).inc()
        return EnsureIndexResult(status=status, doc_hash=doc_hash, artifact=artifact, progress=progress)
