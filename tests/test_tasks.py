from types import SimpleNamespace

import pytest

from index_service import dependencies
from index_service.core.config import settings
from index_service.core.exceptions import NoExtractableTextError
from index_service.domain.models import PipelineStage, StageJobPayload, StorageLocators
from index_service.tasks import stage_tasks
from index_service.tasks.celery_app import celery_app
from index_service.worker import build_worker_argv


def _payload() -> dict:
    return StageJobPayload(
        org_id="o", tender_id="t", document_id="d", doc_hash="h", filename="a.txt",
        storage=StorageLocators(bucket="b", raw_key="r", base_path="p", index_bucket="i"),
        artifact_version=1,
    ).model_dump(mode="json")


def test_every_stage_has_a_routed_task():
    routes = celery_app.conf.task_routes
    for stage in PipelineStage:
        assert stage.task_name in celery_app.tasks
        assert routes[stage.task_name] == {"queue": stage.queue_name}


def test_retry_policy_matches_settings():
    options = stage_tasks.STAGE_TASK_OPTIONS
    assert options["max_retries"] == settings.STAGE_MAX_ATTEMPTS - 1
    assert options["retry_backoff"] == settings.STAGE_BACKOFF_SECONDS
    assert NoExtractableTextError in options["dont_autoretry_for"]
    assert options["acks_late"] is True


def test_run_stage_passes_attempt_numbers(monkeypatch):
    calls = []

    class RecordingStage:
        def execute(self, payload, attempt, max_attempts):
            calls.append((payload.doc_hash, attempt, max_attempts))
            return {"chunk_count": 4}

    monkeypatch.setattr(dependencies, "get_stage_use_case", lambda stage: RecordingStage())
    task = SimpleNamespace(request=SimpleNamespace(retries=1, id="t:h:chunk"), max_retries=2)

    assert stage_tasks.run_stage(task, PipelineStage.CHUNK, _payload()) == {"chunk_count": 4}
    assert calls == [("h", 2, 3)]


def test_run_stage_propagates_failures(monkeypatch):
    class FailingStage:
        def execute(self, payload, attempt, max_attempts):
            raise RuntimeError("boom")

    monkeypatch.setattr(dependencies, "get_stage_use_case", lambda stage: FailingStage())
    task = SimpleNamespace(request=SimpleNamespace(retries=0, id="x"), max_retries=2)

    with pytest.raises(RuntimeError):
        stage_tasks.run_stage(task, PipelineStage.EMBED, _payload())


def test_worker_argv_uses_stage_concurrency():
    argv = build_worker_argv(PipelineStage.EXTRACT)
    assert argv[argv.index("-Q") + 1] == "ingest.extract"
    assert argv[argv.index("-c") + 1] == str(settings.STAGE_CONCURRENCY["extract"])


def test_worker_argv_for_all_queues():
    argv = build_worker_argv(None)
    assert argv[argv.index("-Q") + 1].split(",") == [s.queue_name for s in PipelineStage]
    assert argv[argv.index("-c") + 1] == str(max(settings.STAGE_CONCURRENCY.values()))
