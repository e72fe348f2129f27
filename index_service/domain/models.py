import hashlib
import json
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from index_service.application.ports.vector_search_port import VectorSearchPort

MANIFEST_SCHEMA = "tender-index.v1"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    SUMMARIZING = "summarizing"
    READY = "ready"
    FAILED = "failed"


class ArtifactStatus(str, Enum):
    BUILDING = "BUILDING"
    READY = "READY"
    FAILED = "FAILED"


class EnsureIndexStatus(str, Enum):
    READY = "READY"
    BUILDING = "BUILDING"
    ENQUEUED = "ENQUEUED"


class ProgressPhase(str, Enum):
    QUEUED = "queued"
    MANIFEST = "manifest"
    EMBEDDING = "embedding"
    FINALIZE = "finalize"
    READY = "ready"
    FAILED = "failed"
    UNKNOWN = "unknown"


PHASE_ORDER: Dict[ProgressPhase, int] = {
    ProgressPhase.UNKNOWN: -1,
    ProgressPhase.QUEUED: 0,
    ProgressPhase.MANIFEST: 1,
    ProgressPhase.EMBEDDING: 2,
    ProgressPhase.FINALIZE: 3,
    ProgressPhase.READY: 4,
    ProgressPhase.FAILED: 4,
}


class PipelineStage(str, Enum):
    MANIFEST = "manifest"
    EXTRACT = "extract"
    CHUNK = "chunk"
    EMBED = "embed"
    SUMMARY = "summary"

    @property
    def next_stage(self) -> Optional["PipelineStage"]:
        order = list(PipelineStage)
        idx = order.index(self)
        return order[idx + 1] if idx + 1 < len(order) else None

    @property
    def in_progress_status(self) -> DocumentStatus:
        """Document status shown while this stage is queued or running."""
        return {
            PipelineStage.MANIFEST: DocumentStatus.PENDING,
            PipelineStage.EXTRACT: DocumentStatus.EXTRACTING,
            PipelineStage.CHUNK: DocumentStatus.CHUNKING,
            PipelineStage.EMBED: DocumentStatus.EMBEDDING,
            PipelineStage.SUMMARY: DocumentStatus.SUMMARIZING,
        }[self]

    @property
    def queue_name(self) -> str:
        return f"ingest.{self.value}"

    @property
    def task_name(self) -> str:
        return f"index.stage.{self.value}"


class DocumentRecord(BaseModel):
    id: str
    org_id: str
    tender_id: str
    doc_hash: str
    title: Optional[str] = None
    mime_type: Optional[str] = None
    bytes: int = 0
    pages: Optional[int] = None
    has_text: Optional[bool] = None
    storage_bucket: Optional[str] = None
    storage_key: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class IndexArtifactRecord(BaseModel):
    id: str
    doc_hash: str
    org_id: str
    tender_id: str
    version: int
    status: ArtifactStatus
    storage_key: Optional[str] = None
    total_chunks: int = 0
    total_pages: int = 0
    bytes_approx: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ManifestStats(BaseModel):
    total_chunks: int
    total_pages: int
    total_tokens: int
    chunk_size: int
    chunk_overlap: int
    embedding_model: str
    embedding_dimensions: int


class ManifestFileEntry(BaseModel):
    file_id: str
    path: str
    sha256: str
    pages: int = 0
    size: int = 0
    skipped: bool = False


class Manifest(BaseModel):
    """Versioned, immutable description of one completed index build."""
    model_config = ConfigDict(populate_by_name=True)

    version: int
    schema_tag: str = Field(default=MANIFEST_SCHEMA, alias="schema")
    doc_hash: str
    org_id: str
    tender_id: str
    created_at: datetime
    updated_at: datetime
    stats: ManifestStats
    files: List[ManifestFileEntry] = Field(default_factory=list)
    has_hnsw_index: bool = False
    checksum: str = ""

    @staticmethod
    def compute_checksum(stats: ManifestStats, files: List[ManifestFileEntry], doc_hash: str) -> str:
        digest = hashlib.sha256()
        digest.update(json.dumps(stats.model_dump(mode="json"), sort_keys=True).encode("utf-8"))
        digest.update(json.dumps([f.model_dump(mode="json") for f in files], sort_keys=True).encode("utf-8"))
        digest.update(doc_hash.encode("utf-8"))
        return digest.hexdigest()

    def verify_checksum(self) -> bool:
        return self.checksum == self.compute_checksum(self.stats, self.files, self.doc_hash)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, indent=2).encode("utf-8")


class ChunkRecord(BaseModel):
    chunk_id: str
    file_id: str
    page: int
    offset: int
    length: int
    md5: str
    text: Optional[str] = None

    @staticmethod
    def make_id(doc_hash: str, ordinal: int) -> str:
        return f"{doc_hash}:{ordinal}"

    @property
    def token_estimate(self) -> int:
        return math.ceil(len(self.text or "") / 4)


def now_millis() -> int:
    return int(time.time() * 1000)


class IndexProgressSnapshot(BaseModel):
    doc_hash: str
    phase: ProgressPhase = ProgressPhase.UNKNOWN
    percent: float = 0
    batches_done: int = 0
    total_batches: int = 0
    eta_seconds: Optional[float] = None
    message: Optional[str] = None
    updated_at: int = Field(default_factory=now_millis)

    @classmethod
    def build(
        cls,
        doc_hash: str,
        phase: ProgressPhase,
        percent: float,
        batches_done: int = 0,
        total_batches: int = 0,
        eta_seconds: Optional[float] = None,
        message: Optional[str] = None,
    ) -> "IndexProgressSnapshot":
        """Builds a snapshot with percent clamped to 0..100 and a non-negative ETA."""
        if not math.isfinite(percent):
            percent = 0
        clamped_eta = None
        if eta_seconds is not None and math.isfinite(eta_seconds):
            clamped_eta = max(0.0, float(eta_seconds))
        return cls(
            doc_hash=doc_hash,
            phase=phase,
            percent=min(100.0, max(0.0, float(percent))),
            batches_done=max(0, batches_done),
            total_batches=max(0, total_batches),
            eta_seconds=clamped_eta,
            message=message,
            updated_at=now_millis(),
        )

    @classmethod
    def unknown(cls, doc_hash: str) -> "IndexProgressSnapshot":
        return cls(doc_hash=doc_hash, phase=ProgressPhase.UNKNOWN, percent=0)


class StorageLocators(BaseModel):
    """Where one document's raw file and derived stage outputs live."""
    bucket: str
    raw_key: str
    base_path: str
    index_bucket: str

    @property
    def manifest_key(self) -> str:
        return f"{self.base_path}/manifest.json"

    @property
    def extracted_key(self) -> str:
        return f"{self.base_path}/extracted.jsonl.gz"

    @property
    def chunks_key(self) -> str:
        return f"{self.base_path}/chunks.jsonl.gz"

    @property
    def embeddings_key(self) -> str:
        return f"{self.base_path}/embeddings.f16.bin"

    @property
    def hnsw_key(self) -> str:
        return f"{self.base_path}/hnsw.index"

    @property
    def embedding_meta_key(self) -> str:
        return f"{self.base_path}/embedding_meta.json"

    @property
    def summary_key(self) -> str:
        return f"{self.base_path}/summaries.json"


class StageJobPayload(BaseModel):
    org_id: str
    tender_id: str
    document_id: str
    doc_hash: str
    filename: str
    mime_type: Optional[str] = None
    storage: StorageLocators
    artifact_version: int
    file_count: Optional[int] = None
    extracted_pages: Optional[int] = None
    chunk_count: Optional[int] = None


class EnsureIndexResult(BaseModel):
    status: EnsureIndexStatus
    doc_hash: str
    artifact: Optional[IndexArtifactRecord] = None
    progress: Optional[IndexProgressSnapshot] = None


@dataclass
class LoadedArtifact:
    """
    A fully unpacked, query-ready artifact. Its data is never mutated after
    construction; only the lease bookkeeping below changes.

    Queries pin it with acquire/release. retire() closes the vector index
    right away when nobody holds it, otherwise when the last holder releases.
    """
    doc_hash: str
    manifest: Manifest
    chunks: List[ChunkRecord]
    embeddings: np.ndarray
    embeddings_f16: bytes
    dims: int
    names: Dict[str, Dict[str, Any]]
    bytes: int
    vector_index: Optional["VectorSearchPort"] = field(default=None)
    _leases: int = field(default=0, init=False, repr=False, compare=False)
    _retired: bool = field(default=False, init=False, repr=False, compare=False)
    _closed: bool = field(default=False, init=False, repr=False, compare=False)
    _lease_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(self) -> bool:
        """Pins the artifact. False when its index is already closed."""
        with self._lease_lock:
            if self._closed:
                return False
            self._leases += 1
            return True

    def release(self) -> None:
        with self._lease_lock:
            self._leases = max(0, self._leases - 1)
            close_now = self._mark_closed_locked()
        if close_now:
            self._close_index()

    def retire(self) -> None:
        with self._lease_lock:
            self._retired = True
            close_now = self._mark_closed_locked()
        if close_now:
            self._close_index()

    def _mark_closed_locked(self) -> bool:
        if self._closed or not self._retired or self._leases > 0:
            return False
        self._closed = True
        return True

    def _close_index(self) -> None:
        if self.vector_index is not None:
            self.vector_index.close()
