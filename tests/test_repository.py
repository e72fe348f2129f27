from datetime import datetime, timedelta, timezone

from sqlalchemy import update

from index_service.db.postgres_client import documents_table
from index_service.domain.models import ArtifactStatus, DocumentStatus


def test_document_lookup_is_scoped_by_tender(repository, add_document):
    doc = add_document()

    assert repository.get_document("tender-1", doc.doc_hash).id == doc.id
    assert repository.get_document("another-tender", doc.doc_hash) is None
    assert repository.get_document_by_id(doc.id).title == "instructions.txt"


def test_update_document_status_and_error(repository, add_document):
    doc = add_document()

    assert repository.update_document(doc.id, DocumentStatus.FAILED, error="x" * 900) is True
    failed = repository.get_document_by_id(doc.id)
    assert failed.status == DocumentStatus.FAILED
    assert len(failed.error) == 500

    repository.update_document(doc.id, DocumentStatus.CHUNKING, pages=12, has_text=True, size_bytes=2048)
    chunking = repository.get_document_by_id(doc.id)
    assert chunking.status == DocumentStatus.CHUNKING
    assert chunking.error is None
    assert (chunking.pages, chunking.has_text, chunking.bytes) == (12, True, 2048)


def test_update_unknown_document_returns_false(repository):
    assert repository.update_document("missing", DocumentStatus.READY) is False


def test_upsert_artifact_inserts_then_updates(repository):
    created = repository.upsert_artifact(doc_hash="h1", org_id="o", tender_id="t", status=ArtifactStatus.BUILDING,
                                         version=1, total_chunks=0, total_pages=0, bytes_approx=10)
    assert created.status == ArtifactStatus.BUILDING
    assert created.storage_key is None

    updated = repository.upsert_artifact(doc_hash="h1", org_id="o", tender_id="t", status=ArtifactStatus.READY,
                                         version=1, storage_key="k.tar.gz", total_chunks=7, total_pages=2,
                                         bytes_approx=4096)
    assert updated.id == created.id
    assert (updated.status, updated.storage_key, updated.total_chunks, updated.bytes_approx) == (
        ArtifactStatus.READY, "k.tar.gz", 7, 4096
    )


def test_upsert_without_counters_keeps_existing_values(repository):
    repository.upsert_artifact(doc_hash="h2", org_id="o", tender_id="t", status=ArtifactStatus.READY,
                               version=1, storage_key="k", total_chunks=3)
    row = repository.upsert_artifact(doc_hash="h2", org_id="o", tender_id="t", status=ArtifactStatus.BUILDING,
                                     version=1)
    assert row.total_chunks == 3
    assert row.storage_key == "k"


def test_set_artifact_status(repository):
    assert repository.set_artifact_status("nope", ArtifactStatus.FAILED) is False
    repository.upsert_artifact(doc_hash="h3", org_id="o", tender_id="t", status=ArtifactStatus.BUILDING, version=1)
    assert repository.set_artifact_status("h3", ArtifactStatus.FAILED) is True
    assert repository.get_artifact("h3").status == ArtifactStatus.FAILED


def test_latest_document_wins_for_duplicate_hash(repository, engine, add_document):
    older = add_document()
    newer = add_document()
    past = datetime.now(timezone.utc) - timedelta(days=1)
    with engine.begin() as conn:
        conn.execute(update(documents_table).where(documents_table.c.id == older.id).values(created_at=past))

    assert repository.get_document("tender-1", newer.doc_hash).id == newer.id
