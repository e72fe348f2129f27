import io
import json
import zipfile

import numpy as np
import pytest

from index_service.application.use_cases.artifact_loader import ArtifactLoader, dispose_artifact
from index_service.application.use_cases.search_use_case import SearchDocumentUseCase
from index_service.core.config import settings
from index_service.domain.models import (
    ArtifactStatus,
    DocumentStatus,
    EnsureIndexStatus,
    PipelineStage,
    ProgressPhase,
)
from index_service.infrastructure.artifacts.codec import (
    ARTIFACT_MEMBER_HNSW,
    ARTIFACT_MEMBER_MANIFEST,
    unpack_tar_gz,
)
from index_service.infrastructure.cache.lru_cache import LruCache
from index_service.infrastructure.embedding_models.hashing_adapter import (
    HASHING_DIMENSION,
    HASHING_MODEL_NAME,
    HashingEmbeddingAdapter,
)
from index_service.infrastructure.vector_search.brute_force_index import BruteForceVectorIndex
from index_service.infrastructure.vector_search.hnsw_index import HnswVectorIndex

from tests.conftest import ORG_ID, TENDER_ID, tender_text


def _build(ensure_index, run_pipeline, doc):
    result = ensure_index.execute(ORG_ID, TENDER_ID, doc.doc_hash)
    assert result.status == EnsureIndexStatus.ENQUEUED
    return run_pipeline()


def test_full_build_publishes_a_loadable_artifact(ensure_index, run_pipeline, add_document, repository,
                                                  storage, lock, progress_store):
    doc = add_document()

    ran = _build(ensure_index, run_pipeline, doc)

    assert ran == list(PipelineStage)
    artifact_row = repository.get_artifact(doc.doc_hash)
    assert artifact_row.status == ArtifactStatus.READY
    assert artifact_row.storage_key == (
        f"tenders/{ORG_ID}/{TENDER_ID}/indexes/{doc.doc_hash}/v1/index.v1.tar.gz"
    )
    assert artifact_row.total_pages == 1
    assert artifact_row.total_chunks > 1
    document = repository.get_document_by_id(doc.id)
    assert document.status == DocumentStatus.READY
    assert document.error is None
    assert document.pages == 1
    assert document.has_text is True
    assert not lock.is_held(doc.doc_hash)
    final = progress_store.records[doc.doc_hash]
    assert final.phase == ProgressPhase.READY
    assert final.percent == 100

    loader = ArtifactLoader(storage, cache=None)
    loaded = loader.load(doc.doc_hash, artifact_row.storage_key)
    assert loaded.manifest.verify_checksum()
    assert loaded.manifest.stats.embedding_model == HASHING_MODEL_NAME
    assert len(loaded.chunks) == loaded.manifest.stats.total_chunks == artifact_row.total_chunks
    assert loaded.dims == loaded.manifest.stats.embedding_dimensions == HASHING_DIMENSION
    assert loaded.embeddings.shape == (len(loaded.chunks), HASHING_DIMENSION)
    assert isinstance(loaded.vector_index, BruteForceVectorIndex)
    assert set(loaded.names) == {loaded.chunks[0].file_id}


def test_progress_only_moves_forward_during_a_build(ensure_index, run_pipeline, add_document, progress_store):
    doc = add_document()
    _build(ensure_index, run_pipeline, doc)

    phases = [s.phase for s in progress_store.writes if s.doc_hash == doc.doc_hash]
    percents = [s.percent for s in progress_store.writes if s.doc_hash == doc.doc_hash]
    assert phases[0] == ProgressPhase.QUEUED
    assert phases[-1] == ProgressPhase.READY
    assert percents == sorted(percents)
    assert ProgressPhase.EMBEDDING in phases
    assert set(phases) <= {
        ProgressPhase.QUEUED, ProgressPhase.MANIFEST, ProgressPhase.EMBEDDING,
        ProgressPhase.FINALIZE, ProgressPhase.READY,
    }
    manifest_percents = [s.percent for s in progress_store.writes if s.phase == ProgressPhase.MANIFEST]
    assert manifest_percents[-1] == 30


def test_manifest_on_storage_is_well_formed(ensure_index, run_pipeline, add_document, storage, repository):
    doc = add_document()
    _build(ensure_index, run_pipeline, doc)

    archive = storage.get_object(settings.INDEX_BUCKET_NAME, repository.get_artifact(doc.doc_hash).storage_key)
    manifest = json.loads(unpack_tar_gz(archive)[ARTIFACT_MEMBER_MANIFEST])
    assert manifest["schema"] == "tender-index.v1"
    assert manifest["version"] == 1
    assert manifest["doc_hash"] == doc.doc_hash
    assert manifest["stats"]["chunk_size"] == settings.CHUNK_SIZE
    assert manifest["stats"]["chunk_overlap"] == settings.CHUNK_OVERLAP
    assert manifest["has_hnsw_index"] is False
    assert len(manifest["checksum"]) == 64


def test_zip_upload_indexes_each_text_member(ensure_index, run_pipeline, add_document, repository, storage):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("bundle/instructions.txt", tender_text(10))
        archive.writestr("bundle/annex/specs.txt", tender_text(5))
        archive.writestr("bundle/plans/site.png", b"\x89PNG not really")
    doc = add_document(content=buffer.getvalue(), title="bundle.zip", mime_type="application/zip")

    _build(ensure_index, run_pipeline, doc)

    artifact_row = repository.get_artifact(doc.doc_hash)
    assert artifact_row.status == ArtifactStatus.READY
    assert artifact_row.total_pages == 2
    loaded = ArtifactLoader(storage, cache=None).load(doc.doc_hash, artifact_row.storage_key)
    skipped = [f for f in loaded.manifest.files if f.skipped]
    assert [f.path for f in skipped] == ["bundle/plans/site.png"]
    assert skipped[0].sha256 == ""
    assert len({c.file_id for c in loaded.chunks}) == 2
    assert {meta["name"] for meta in loaded.names.values()} == {"instructions.txt", "specs.txt", "site.png"}


def test_large_documents_ship_an_hnsw_graph(ensure_index, run_pipeline, add_document, repository, storage, monkeypatch):
    monkeypatch.setattr(settings, "HNSW_MIN_CHUNKS", 2)
    doc = add_document()
    _build(ensure_index, run_pipeline, doc)

    artifact_row = repository.get_artifact(doc.doc_hash)
    members = unpack_tar_gz(storage.get_object(settings.INDEX_BUCKET_NAME, artifact_row.storage_key))
    assert ARTIFACT_MEMBER_HNSW in members

    loaded = ArtifactLoader(storage, cache=None).load(doc.doc_hash, artifact_row.storage_key)
    assert loaded.manifest.has_hnsw_index is True
    assert isinstance(loaded.vector_index, HnswVectorIndex)
    query = loaded.embeddings[0]
    assert loaded.vector_index.search(query, 1)[0].index == 0
    loaded.vector_index.close()


def test_second_ensure_after_build_is_ready(ensure_index, run_pipeline, add_document, job_queue):
    doc = add_document()
    _build(ensure_index, run_pipeline, doc)
    submitted = len(job_queue.submitted)

    result = ensure_index.execute(ORG_ID, TENDER_ID, doc.doc_hash)

    assert result.status == EnsureIndexStatus.READY
    assert len(job_queue.submitted) == submitted


@pytest.mark.parametrize("cache_enabled", [True, False])
def test_search_results_do_not_depend_on_the_cache(ensure_index, run_pipeline, add_document, repository,
                                                   storage, cache_enabled):
    doc = add_document()
    _build(ensure_index, run_pipeline, doc)

    cache = LruCache(max_entries=2, on_dispose=dispose_artifact) if cache_enabled else None
    loader = ArtifactLoader(storage, cache=cache)
    model = HashingEmbeddingAdapter()
    search = SearchDocumentUseCase(repository, loader, {model.model_name: model})

    results = search.execute(ORG_ID, TENDER_ID, doc.doc_hash, "bill of quantities clause 70", top_k=3)
    again = search.execute(ORG_ID, TENDER_ID, doc.doc_hash, "bill of quantities clause 70", top_k=3)

    assert len(results) == 3
    assert [r["chunk_id"] for r in results] == [r["chunk_id"] for r in again]
    assert all(r["file"] == "instructions.txt" for r in results)
    scores = [r["score"] for r in results]
    assert scores == sorted(scores, reverse=True)
    assert (doc.doc_hash in cache) if cache_enabled else loader.cache is None
    assert loader.release(doc.doc_hash) is cache_enabled


def test_cached_load_returns_the_same_artifact(ensure_index, run_pipeline, add_document, repository, storage):
    doc = add_document()
    _build(ensure_index, run_pipeline, doc)
    key = repository.get_artifact(doc.doc_hash).storage_key
    loader = ArtifactLoader(storage, cache=LruCache(max_entries=1, on_dispose=dispose_artifact))

    first = loader.load(doc.doc_hash, key)
    assert loader.load(doc.doc_hash, key) is first
    fresh = loader.load(doc.doc_hash, key, prefer_cache=False)
    assert fresh is not first
    np.testing.assert_array_equal(fresh.embeddings, first.embeddings)
    loader.close()
    assert loader.cache.size == 0
