from abc import ABC, abstractmethod

from index_service.domain.models import PipelineStage, StageJobPayload

class JobQueuePort(ABC):
    """
    Interface (Port) for the durable per-stage job queues.
    """

    @abstractmethod
    def enqueue(self, stage: PipelineStage, payload: StageJobPayload, job_id: str) -> bool:
        """
        Submits a stage job unless a job with the same id is still pending.

        Args:
            stage: Pipeline stage whose queue receives the job.
            payload: Identity fields and stage metrics carried to the worker.
            job_id: Deterministic job identity, see `stage_job_id`.

        Returns:
            True if the job was submitted, False if it was deduplicated.
        """
        pass

    @abstractmethod
    def release_job(self, job_id: str) -> None:
        """Forgets a job id so the same stage can be submitted again."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass
