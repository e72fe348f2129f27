from typing import Optional

import structlog

from index_service.application.ports.progress_port import ProgressStorePort
from index_service.domain.models import (
    PHASE_ORDER,
    IndexProgressSnapshot,
    ProgressPhase,
)

log = structlog.get_logger(__name__)


class ProgressTracker:
    """
    Reads and writes the per-document progress record.

    Workers go through `advance`, which refuses to move a build backwards in
    phase or percent. Only `reset` (a fresh build or a forced rebuild) may go
    back to queued/1%.
    """

    def __init__(self, store: ProgressStorePort):
        self.store = store
        self.log = log.bind(component="ProgressTracker")

    def write_progress(self, doc_hash: str, snapshot: IndexProgressSnapshot) -> IndexProgressSnapshot:
        if snapshot.doc_hash != doc_hash:
            snapshot = snapshot.model_copy(update={"doc_hash": doc_hash})
        self.store.write(snapshot)
        return snapshot

    def read_progress(self, doc_hash: str) -> IndexProgressSnapshot:
        snapshot = self.store.read(doc_hash)
        if snapshot is None:
            return IndexProgressSnapshot.unknown(doc_hash)
        return snapshot

    def reset(self, doc_hash: str, message: Optional[str] = None) -> IndexProgressSnapshot:
        snapshot = IndexProgressSnapshot.build(doc_hash, ProgressPhase.QUEUED, 1, message=message)
        return self.write_progress(doc_hash, snapshot)

    def advance(
        self,
        doc_hash: str,
        phase: ProgressPhase,
        percent: float,
        batches_done: int = 0,
        total_batches: int = 0,
        eta_seconds: Optional[float] = None,
        message: Optional[str] = None,
    ) -> Optional[IndexProgressSnapshot]:
        """
        Writes a new snapshot unless it would regress the current build.

        Returns:
            The snapshot written, or None if the write was skipped.
        """
        current = self.store.read(doc_hash)
        if current is not None and phase != ProgressPhase.FAILED and current.phase not in (
            ProgressPhase.READY, ProgressPhase.FAILED, ProgressPhase.UNKNOWN
        ):
            current_rank = PHASE_ORDER[current.phase]
            new_rank = PHASE_ORDER[phase]
            if new_rank < current_rank:
                self.log.debug("Skipping progress regression", doc_hash=doc_hash,
                               current_phase=current.phase.value, new_phase=phase.value)
                return None
            if new_rank == current_rank:
                percent = max(percent, current.percent)

        snapshot = IndexProgressSnapshot.build(
            doc_hash,
            phase,
            percent,
            batches_done=batches_done,
            total_batches=total_batches,
            eta_seconds=eta_seconds,
            message=message,
        )
        return self.write_progress(doc_hash, snapshot)
