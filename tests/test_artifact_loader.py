import threading
import time

import pytest

from index_service.application.use_cases.artifact_loader import ArtifactLoader, dispose_artifact
from index_service.application.use_cases.search_use_case import SearchDocumentUseCase
from index_service.domain.models import EnsureIndexStatus
from index_service.infrastructure.cache.lru_cache import LruCache
from index_service.infrastructure.embedding_models.hashing_adapter import HashingEmbeddingAdapter

from tests.conftest import ORG_ID, TENDER_ID

QUERY = "bill of quantities clause 70"


@pytest.fixture
def built_doc(ensure_index, run_pipeline, add_document, repository):
    doc = add_document()
    assert ensure_index.execute(ORG_ID, TENDER_ID, doc.doc_hash).status == EnsureIndexStatus.ENQUEUED
    run_pipeline()
    return doc, repository.get_artifact(doc.doc_hash).storage_key


def _query_vector():
    return HashingEmbeddingAdapter().embed_texts([QUERY])[0]


def _search(repository, loader):
    model = HashingEmbeddingAdapter()
    return SearchDocumentUseCase(repository, loader, {model.model_name: model})


def test_artifact_over_the_byte_budget_is_served_uncached(built_doc, repository, storage):
    doc, _ = built_doc
    uncached = _search(repository, ArtifactLoader(storage, cache=None))
    tiny_cache = LruCache(max_entries=5, max_size_bytes=1024, on_dispose=dispose_artifact)
    cached = _search(repository, ArtifactLoader(storage, cache=tiny_cache))

    expected = uncached.execute(ORG_ID, TENDER_ID, doc.doc_hash, QUERY, top_k=3)
    assert len(expected) == 3
    assert cached.execute(ORG_ID, TENDER_ID, doc.doc_hash, QUERY, top_k=3) == expected
    assert cached.execute(ORG_ID, TENDER_ID, doc.doc_hash, QUERY, top_k=3) == expected
    assert tiny_cache.size == 0
    assert tiny_cache.total_size == 0


def test_oversized_load_returns_an_open_artifact(built_doc, storage):
    doc, key = built_doc
    loader = ArtifactLoader(storage, cache=LruCache(max_size_bytes=1, on_dispose=dispose_artifact))

    artifact = loader.load(doc.doc_hash, key)

    assert not artifact.closed
    assert len(artifact.vector_index.search(_query_vector(), 3)) == 3


def test_replacing_a_checked_out_artifact_keeps_it_open(built_doc, storage):
    doc, key = built_doc
    loader = ArtifactLoader(storage, cache=LruCache(max_entries=2, on_dispose=dispose_artifact))
    query = _query_vector()

    with loader.checkout(doc.doc_hash, key) as held:
        before = held.vector_index.search(query, 3)
        fresh = loader.load(doc.doc_hash, key, prefer_cache=False)
        assert fresh is not held
        assert loader.cache.get(doc.doc_hash) is fresh
        assert held.vector_index.search(query, 3) == before
        assert not held.closed

    assert held.closed
    assert not fresh.closed


def test_release_while_checked_out_defers_close(built_doc, storage):
    doc, key = built_doc
    loader = ArtifactLoader(storage, cache=LruCache(max_entries=2, on_dispose=dispose_artifact))

    with loader.checkout(doc.doc_hash, key) as held:
        assert loader.release(doc.doc_hash) is True
        assert len(held.vector_index.search(_query_vector(), 3)) == 3
    assert held.closed


def test_checkout_without_cache_closes_on_exit(built_doc, storage):
    doc, key = built_doc
    loader = ArtifactLoader(storage, cache=None)

    with loader.checkout(doc.doc_hash, key) as artifact:
        assert not artifact.closed
    assert artifact.closed


def test_cached_checkout_stays_open_after_exit(built_doc, storage):
    doc, key = built_doc
    loader = ArtifactLoader(storage, cache=LruCache(max_entries=2, on_dispose=dispose_artifact))

    with loader.checkout(doc.doc_hash, key) as first:
        pass
    with loader.checkout(doc.doc_hash, key) as second:
        assert second is first
    assert not first.closed


def test_concurrent_misses_share_one_fetch(built_doc, storage, monkeypatch):
    doc, key = built_doc
    loader = ArtifactLoader(storage, cache=LruCache(max_entries=2, on_dispose=dispose_artifact))
    fetches = []
    real_get = storage.get_object

    def slow_get(bucket, object_key):
        if object_key == key:
            fetches.append(object_key)
            time.sleep(0.05)
        return real_get(bucket, object_key)

    monkeypatch.setattr(storage, "get_object", slow_get)
    results = []
    threads = [threading.Thread(target=lambda: results.append(loader.load(doc.doc_hash, key))) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(fetches) == 1
    assert len(results) == 4
    assert all(result is results[0] for result in results)
    assert not results[0].closed
