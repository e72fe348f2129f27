# File: index_service/api/v1/schemas.py
from typing import List, Optional
from pydantic import BaseModel, Field

from index_service.domain.models import (
    EnsureIndexStatus,
    IndexArtifactRecord,
    IndexProgressSnapshot,
    PipelineStage,
)

class EnsureIndexRequest(BaseModel):
    force_rebuild: bool = Field(False, description="Discard any previous build and start over.")

class ArtifactInfo(BaseModel):
    id: str
    storage_key: Optional[str] = None
    version: int
    status: str
    total_chunks: int
    total_pages: int
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: IndexArtifactRecord) -> "ArtifactInfo":
        return cls(
            id=record.id,
            storage_key=record.storage_key,
            version=record.version,
            status=record.status.value,
            total_chunks=record.total_chunks,
            total_pages=record.total_pages,
            updated_at=record.updated_at.isoformat() if record.updated_at else None,
        )

class EnsureIndexResponse(BaseModel):
    status: EnsureIndexStatus
    doc_hash: str
    artifact: Optional[ArtifactInfo] = None
    progress: Optional[IndexProgressSnapshot] = None

class ReleaseResponse(BaseModel):
    doc_hash: str
    released: bool

class RetryResponse(BaseModel):
    status: str = "ENQUEUED"
    doc_hash: str
    stage: PipelineStage
    progress: IndexProgressSnapshot

class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: int = Field(5, ge=1, le=50)

class SearchHit(BaseModel):
    chunk_id: str
    score: float
    page: int
    file: Optional[str] = None
    text: Optional[str] = None

class SearchResponse(BaseModel):
    doc_hash: str
    results: List[SearchHit]
