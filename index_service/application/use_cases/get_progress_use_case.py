import structlog

from index_service.application.ports.index_repository_port import IndexRepositoryPort
from index_service.application.progress import ProgressTracker
from index_service.domain.models import ArtifactStatus, IndexProgressSnapshot, ProgressPhase

log = structlog.get_logger(__name__)

_PHASE_FROM_ARTIFACT = {
    ArtifactStatus.READY: (ProgressPhase.READY, 100),
    ArtifactStatus.FAILED: (ProgressPhase.FAILED, 0),
    ArtifactStatus.BUILDING: (ProgressPhase.QUEUED, 1),
}


class GetProgressUseCase:
    """
    Latest progress for a document. When the ephemeral record has expired,
    falls back to the durable artifact status, then to `unknown`.
    """

    def __init__(self, progress: ProgressTracker, repository: IndexRepositoryPort):
        self.progress = progress
        self.repository = repository

    def execute(self, doc_hash: str) -> IndexProgressSnapshot:
        snapshot = self.progress.read_progress(doc_hash)
        if snapshot.phase != ProgressPhase.UNKNOWN:
            return snapshot

        artifact = self.repository.get_artifact(doc_hash)
        if artifact is None:
            return snapshot
        phase, percent = _PHASE_FROM_ARTIFACT[artifact.status]
        log.debug("No progress record, derived from artifact row", doc_hash=doc_hash, artifact_status=artifact.status.value)
        return IndexProgressSnapshot.build(doc_hash, phase, percent, message="Derived from artifact status")
