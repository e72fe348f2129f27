import pytest

from index_service.application.use_cases.get_progress_use_case import GetProgressUseCase
from index_service.domain.models import ArtifactStatus, ProgressPhase


@pytest.fixture
def use_case(progress, repository):
    return GetProgressUseCase(progress, repository)


def test_live_record_wins(use_case, progress, repository):
    repository.upsert_artifact(doc_hash="h", org_id="o", tender_id="t", status=ArtifactStatus.BUILDING, version=1)
    progress.reset("h")
    progress.advance("h", ProgressPhase.EMBEDDING, 64, batches_done=3, total_batches=6)

    snapshot = use_case.execute("h")
    assert snapshot.phase == ProgressPhase.EMBEDDING
    assert snapshot.batches_done == 3


@pytest.mark.parametrize("status,phase,percent", [
    (ArtifactStatus.READY, ProgressPhase.READY, 100),
    (ArtifactStatus.FAILED, ProgressPhase.FAILED, 0),
    (ArtifactStatus.BUILDING, ProgressPhase.QUEUED, 1),
])
def test_expired_record_falls_back_to_artifact(use_case, repository, status, phase, percent):
    repository.upsert_artifact(doc_hash="h", org_id="o", tender_id="t", status=status, version=1)

    snapshot = use_case.execute("h")
    assert (snapshot.phase, snapshot.percent) == (phase, percent)


def test_nothing_known(use_case):
    assert use_case.execute("nope").phase == ProgressPhase.UNKNOWN
