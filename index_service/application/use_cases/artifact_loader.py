import json
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog

from index_service.application.ports.storage_port import StoragePort
from index_service.core.config import settings
from index_service.core.exceptions import ArtifactIntegrityError
from index_service.core.metrics import ARTIFACT_CACHE_EVENTS_TOTAL, ARTIFACT_LOAD_DURATION_SECONDS
from index_service.domain.models import ChunkRecord, LoadedArtifact, Manifest
from index_service.infrastructure.artifacts.codec import (
    ARTIFACT_MEMBER_CHUNKS,
    ARTIFACT_MEMBER_EMBEDDINGS,
    ARTIFACT_MEMBER_HNSW,
    ARTIFACT_MEMBER_MANIFEST,
    ARTIFACT_MEMBER_NAMES,
    decode_float16,
    decode_jsonl_gz,
    unpack_tar_gz,
)
from index_service.infrastructure.cache.lru_cache import LruCache
from index_service.infrastructure.vector_search.brute_force_index import BruteForceVectorIndex
from index_service.infrastructure.vector_search.hnsw_index import HnswVectorIndex

log = structlog.get_logger(__name__)


def dispose_artifact(artifact: LoadedArtifact, doc_hash: Any) -> None:
    # Queries still holding the artifact keep it open until they finish
    artifact.retire()
    log.debug("Artifact disposed", doc_hash=doc_hash, closed=artifact.closed)


def build_artifact_cache() -> Optional[LruCache]:
    if not settings.ARTIFACT_CACHE_ENABLED:
        return None
    return LruCache(
        max_entries=settings.ARTIFACT_CACHE_MAX_ENTRIES,
        max_size_bytes=settings.ARTIFACT_CACHE_MAX_BYTES,
        on_dispose=dispose_artifact,
    )


class ArtifactLoader:
    """
    Downloads, validates and unpacks index artifacts, keeping recently used
    ones in a process-local LRU cache. With cache=None every load goes to
    storage; results are identical either way.

    Concurrent misses for one doc_hash share a single fetch. Queries should
    go through checkout(), which pins the artifact so eviction or
    replacement by another thread cannot close it mid-search.
    """

    def __init__(self, storage: StoragePort, cache: Optional[LruCache] = None, bucket: Optional[str] = None):
        self.storage = storage
        self.cache = cache
        self.bucket = bucket or settings.INDEX_BUCKET_NAME
        self._loading: Dict[str, threading.Lock] = {}
        self._loading_guard = threading.Lock()
        self.log = log.bind(component="ArtifactLoader", cache_enabled=cache is not None)

    def load(self, doc_hash: str, storage_key: str, prefer_cache: bool = True) -> LoadedArtifact:
        if self.cache is None:
            return self._timed_fetch(doc_hash, storage_key)

        if prefer_cache:
            cached = self.cache.get(doc_hash)
            if cached is not None:
                ARTIFACT_CACHE_EVENTS_TOTAL.labels(event="hit").inc()
                return cached

        with self._fetch_lock(doc_hash):
            if prefer_cache:
                # Filled by the thread we waited on
                cached = self.cache.get(doc_hash)
                if cached is not None:
                    ARTIFACT_CACHE_EVENTS_TOTAL.labels(event="hit").inc()
                    return cached
                ARTIFACT_CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            artifact = self._timed_fetch(doc_hash, storage_key)
            self._store(doc_hash, artifact)
            return artifact

    @contextmanager
    def checkout(self, doc_hash: str, storage_key: str) -> Iterator[LoadedArtifact]:
        """Loads and pins an artifact for the duration of the block."""
        artifact = self.load(doc_hash, storage_key)
        if not artifact.acquire():
            # Evicted and closed between lookup and pin
            artifact = self._timed_fetch(doc_hash, storage_key)
            artifact.acquire()
        try:
            yield artifact
        finally:
            if not self._is_resident(doc_hash, artifact):
                artifact.retire()
            artifact.release()

    def release(self, doc_hash: str) -> bool:
        """Evicts a cached artifact. Returns whether one was resident."""
        if self.cache is None:
            return False
        released = self.cache.delete(doc_hash)
        if released:
            ARTIFACT_CACHE_EVENTS_TOTAL.labels(event="release").inc()
        self.log.info("Artifact release requested", doc_hash=doc_hash, released=released)
        return released

    def close(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def _fetch_lock(self, doc_hash: str) -> threading.Lock:
        with self._loading_guard:
            return self._loading.setdefault(doc_hash, threading.Lock())

    def _store(self, doc_hash: str, artifact: LoadedArtifact) -> None:
        budget = self.cache.max_size_bytes
        if budget and artifact.bytes > budget:
            # Inserting it would evict it, and everything else, straight away
            ARTIFACT_CACHE_EVENTS_TOTAL.labels(event="oversize").inc()
            self.log.warning("Artifact exceeds the cache byte budget, serving it uncached",
                             doc_hash=doc_hash, approx_bytes=artifact.bytes, max_size_bytes=budget)
            return
        self.cache.set(doc_hash, artifact, artifact.bytes)

    def _is_resident(self, doc_hash: str, artifact: LoadedArtifact) -> bool:
        return self.cache is not None and self.cache.get(doc_hash) is artifact

    def _timed_fetch(self, doc_hash: str, storage_key: str) -> LoadedArtifact:
        with ARTIFACT_LOAD_DURATION_SECONDS.time():
            return self._fetch(doc_hash, storage_key)

    def _fetch(self, doc_hash: str, storage_key: str) -> LoadedArtifact:
        started = time.perf_counter()
        blob = self.storage.get_object(self.bucket, storage_key)
        members = unpack_tar_gz(blob)

        missing = [m for m in (ARTIFACT_MEMBER_MANIFEST, ARTIFACT_MEMBER_CHUNKS, ARTIFACT_MEMBER_EMBEDDINGS)
                   if m not in members]
        if missing:
            raise ArtifactIntegrityError(f"Artifact {storage_key} is missing {', '.join(missing)}")

        manifest = Manifest.model_validate_json(members[ARTIFACT_MEMBER_MANIFEST])
        if manifest.doc_hash != doc_hash:
            raise ArtifactIntegrityError(f"Artifact {storage_key} belongs to {manifest.doc_hash}, not {doc_hash}")
        if not manifest.verify_checksum():
            raise ArtifactIntegrityError(f"Manifest checksum mismatch for {doc_hash}")

        chunks = [ChunkRecord.model_validate(row) for row in decode_jsonl_gz(members[ARTIFACT_MEMBER_CHUNKS])]
        dims = manifest.stats.embedding_dimensions
        embeddings_f16 = members[ARTIFACT_MEMBER_EMBEDDINGS]
        matrix = decode_float16(embeddings_f16, dims)
        if len(chunks) != manifest.stats.total_chunks or matrix.shape[0] != len(chunks):
            raise ArtifactIntegrityError(
                f"Artifact {doc_hash} has {len(chunks)} chunks and {matrix.shape[0]} vectors, "
                f"manifest says {manifest.stats.total_chunks}"
            )

        if manifest.has_hnsw_index and ARTIFACT_MEMBER_HNSW in members:
            vector_index = HnswVectorIndex.deserialize(members[ARTIFACT_MEMBER_HNSW], ef_search=settings.HNSW_EF_SEARCH)
        else:
            if manifest.has_hnsw_index:
                self.log.warning("Manifest declares an HNSW index but none was packed, using brute force",
                                 doc_hash=doc_hash)
            vector_index = BruteForceVectorIndex(matrix)

        names = json.loads(members[ARTIFACT_MEMBER_NAMES]) if ARTIFACT_MEMBER_NAMES in members else {}
        approx_bytes = matrix.nbytes + len(embeddings_f16) + sum(len(c.text or "") for c in chunks)
        if ARTIFACT_MEMBER_HNSW in members:
            approx_bytes += len(members[ARTIFACT_MEMBER_HNSW])

        self.log.info("Artifact loaded", doc_hash=doc_hash, chunks=len(chunks), dims=dims,
                      vector_index=type(vector_index).__name__, approx_bytes=approx_bytes,
                      duration_ms=round((time.perf_counter() - started) * 1000, 2))
        return LoadedArtifact(
            doc_hash=doc_hash,
            manifest=manifest,
            chunks=chunks,
            embeddings=matrix,
            embeddings_f16=embeddings_f16,
            dims=dims,
            names=names,
            bytes=approx_bytes,
            vector_index=vector_index,
        )
