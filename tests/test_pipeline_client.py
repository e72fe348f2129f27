from unittest.mock import MagicMock

import pytest

from index_service.domain.models import PipelineStage, StageJobPayload, StorageLocators
from index_service.services.pipeline_client import PipelineClient

JOB_ID = "tender-1:abc:extract"


@pytest.fixture
def payload():
    return StageJobPayload(
        org_id="org-1",
        tender_id="tender-1",
        document_id="doc-1",
        doc_hash="abc",
        filename="a.txt",
        mime_type="text/plain",
        storage=StorageLocators(bucket="uploads", raw_key="raw/a.txt", base_path="org/org-1/tender/tender-1/docs/abc",
                                index_bucket="indexes"),
        artifact_version=1,
        file_count=1,
    )


@pytest.fixture
def celery_app():
    return MagicMock()


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.set.return_value = True
    return client


@pytest.fixture
def client(celery_app, redis_client):
    return PipelineClient(celery_app=celery_app, redis_client=redis_client, dedup_ttl_seconds=120)


def test_enqueue_submits_to_the_stage_queue(client, celery_app, redis_client, payload):
    assert client.enqueue(PipelineStage.EXTRACT, payload, JOB_ID) is True

    redis_client.set.assert_called_once_with(f"pipeline:job:{JOB_ID}", "extract", nx=True, ex=120)
    celery_app.send_task.assert_called_once_with(
        "index.stage.extract",
        kwargs={"payload": payload.model_dump(mode="json")},
        queue="ingest.extract",
        task_id=JOB_ID,
    )


def test_pending_job_is_not_resubmitted(client, celery_app, redis_client, payload):
    redis_client.set.return_value = None

    assert client.enqueue(PipelineStage.EXTRACT, payload, JOB_ID) is False
    celery_app.send_task.assert_not_called()


def test_submit_failure_clears_the_marker(client, celery_app, redis_client, payload):
    celery_app.send_task.side_effect = ConnectionError("broker down")

    with pytest.raises(ConnectionError):
        client.enqueue(PipelineStage.EXTRACT, payload, JOB_ID)
    redis_client.delete.assert_called_once_with(f"pipeline:job:{JOB_ID}")


def test_release_and_close_leave_borrowed_clients_open(client, celery_app, redis_client):
    client.release_job(JOB_ID)
    client.close()

    redis_client.delete.assert_called_once_with(f"pipeline:job:{JOB_ID}")
    redis_client.close.assert_not_called()
    celery_app.close.assert_not_called()
