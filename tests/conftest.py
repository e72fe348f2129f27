import hashlib
import os
import uuid
from datetime import datetime, timezone
from typing import Dict, List

os.environ.setdefault("INDEX_LOG_LEVEL", "WARNING")
os.environ.setdefault("INDEX_OPENAI_API_KEY", "")
os.environ.setdefault("INDEX_INDEX_BUCKET_NAME", "test-indexes")

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from index_service.application.progress import ProgressTracker
from index_service.application.use_cases.ensure_index_use_case import EnsureIndexUseCase
from index_service.application.use_cases.stages import (
    ChunkStage,
    EmbedStage,
    ExtractStage,
    ManifestStage,
    SummaryStage,
)
from index_service.db.postgres_client import documents_table, metadata
from index_service.domain.models import DocumentRecord, PipelineStage
from index_service.infrastructure.chunkers.window_chunker_adapter import WindowChunkerAdapter
from index_service.infrastructure.embedding_models.hashing_adapter import HashingEmbeddingAdapter
from index_service.infrastructure.extractors import CompositeExtractorAdapter, TxtAdapter
from index_service.infrastructure.persistence.sql_index_repository import SqlIndexRepository

from tests.fakes import InMemoryLock, InMemoryProgressStore, InMemoryStorage, RecordingJobQueue

ORG_ID = "org-1"
TENDER_ID = "tender-1"
UPLOAD_BUCKET = "uploads"


def tender_text(paragraphs: int = 30) -> str:
    return "\n\n".join(
        f"Section {i}. The bidder shall submit form {i} with the bill of quantities and "
        f"comply with clause {i * 7} of the instructions to tenderers."
        for i in range(paragraphs)
    )


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def repository(engine):
    return SqlIndexRepository(engine)


@pytest.fixture
def events() -> List[str]:
    return []


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def lock(events):
    return InMemoryLock(events)


@pytest.fixture
def progress_store(events):
    return InMemoryProgressStore(events)


@pytest.fixture
def progress(progress_store):
    return ProgressTracker(progress_store)


@pytest.fixture
def job_queue(events):
    return RecordingJobQueue(events)


@pytest.fixture
def add_document(engine, storage):
    """Inserts a document row and, when content is given, its raw upload."""

    def _add(
        content: bytes = None,
        title: str = "instructions.txt",
        mime_type: str = "text/plain",
        org_id: str = ORG_ID,
        tender_id: str = TENDER_ID,
        with_storage: bool = True,
        doc_hash: str = None,
    ) -> DocumentRecord:
        content = content if content is not None else tender_text().encode("utf-8")
        doc_hash = doc_hash or hashlib.sha256(content).hexdigest()
        row = {
            "id": str(uuid.uuid4()),
            "org_id": org_id,
            "tender_id": tender_id,
            "doc_hash": doc_hash,
            "title": title,
            "mime_type": mime_type,
            "bytes": len(content),
            "storage_bucket": UPLOAD_BUCKET if with_storage else None,
            "storage_key": f"uploads/{tender_id}/{title}" if with_storage else None,
            "status": "pending",
            "created_at": datetime.now(timezone.utc),
            "updated_at": datetime.now(timezone.utc),
        }
        with engine.begin() as conn:
            conn.execute(insert(documents_table).values(**row))
        if with_storage:
            storage.put_object(UPLOAD_BUCKET, row["storage_key"], content)
        return DocumentRecord.model_validate(row)

    return _add


@pytest.fixture
def ensure_index(repository, job_queue, lock, progress):
    return EnsureIndexUseCase(repository=repository, job_queue=job_queue, lock=lock, progress=progress)


@pytest.fixture
def stages(repository, storage, job_queue, progress, lock) -> Dict[PipelineStage, object]:
    common = dict(repository=repository, storage=storage, job_queue=job_queue, progress=progress, lock=lock)
    return {
        PipelineStage.MANIFEST: ManifestStage(**common),
        PipelineStage.EXTRACT: ExtractStage(
            **common, extractor=CompositeExtractorAdapter({"text/plain": TxtAdapter()})
        ),
        PipelineStage.CHUNK: ChunkStage(**common, chunker=WindowChunkerAdapter()),
        PipelineStage.EMBED: EmbedStage(**common, embedding_model=HashingEmbeddingAdapter()),
        PipelineStage.SUMMARY: SummaryStage(**common),
    }


@pytest.fixture
def run_pipeline(job_queue, stages):
    """Drains the recording queue, running each job as the given attempt (first of three by default)."""

    def _run(max_jobs: int = 50, attempt: int = 1, max_attempts: int = 3) -> List[PipelineStage]:
        ran = []
        while job_queue.queue and len(ran) < max_jobs:
            stage, payload, _ = job_queue.pop()
            stages[stage].execute(payload, attempt=attempt, max_attempts=max_attempts)
            ran.append(stage)
        return ran

    return _run
