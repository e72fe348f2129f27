import json
import posixpath
from datetime import datetime, timezone
from typing import Any, Dict, List

from index_service.application.use_cases.stages.base_stage import PipelineStageUseCase, StageOutcome
from index_service.core.config import settings
from index_service.domain.keys import artifact_storage_key
from index_service.domain.models import (
    ArtifactStatus,
    ChunkRecord,
    DocumentStatus,
    Manifest,
    ManifestFileEntry,
    ManifestStats,
    PipelineStage,
    ProgressPhase,
    StageJobPayload,
)
from index_service.infrastructure.artifacts.codec import (
    ARTIFACT_MEMBER_CHUNKS,
    ARTIFACT_MEMBER_EMBEDDINGS,
    ARTIFACT_MEMBER_HNSW,
    ARTIFACT_MEMBER_MANIFEST,
    ARTIFACT_MEMBER_NAMES,
    decode_jsonl_gz,
    pack_tar_gz,
)

SUMMARY_SECTION_LIMIT = 8
ABSTRACT_SOURCE_SECTIONS = 3
ABSTRACT_MAX_CHARS = 800


def build_summary(doc_hash: str, chunks: List[ChunkRecord]) -> Dict[str, Any]:
    sections = sorted(chunks, key=lambda c: c.page)[:SUMMARY_SECTION_LIMIT]
    abstract = " ".join((c.text or "").strip() for c in sections[:ABSTRACT_SOURCE_SECTIONS]).strip()
    return {
        "doc_hash": doc_hash,
        "abstract": abstract[:ABSTRACT_MAX_CHARS],
        "sections": [
            {"chunk_id": c.chunk_id, "page": c.page, "preview": (c.text or "")[:200]}
            for c in sections
        ],
    }


class SummaryStage(PipelineStageUseCase):
    """
    Final stage: writes summaries.json, seals the manifest, packs and uploads
    the artifact, then flips the artifact and document to READY and frees the
    build lock.
    """

    stage = PipelineStage.SUMMARY

    def process(self, payload: StageJobPayload, stage_log: Any) -> StageOutcome:
        storage = payload.storage
        self.progress.advance(payload.doc_hash, ProgressPhase.FINALIZE, 92, message="Packaging index")

        chunks_blob = self.storage.get_object(storage.bucket, storage.chunks_key)
        chunks = [ChunkRecord.model_validate(row) for row in decode_jsonl_gz(chunks_blob)]
        embedding_meta = json.loads(self.storage.get_object(storage.bucket, storage.embedding_meta_key))
        draft = json.loads(self.storage.get_object(storage.bucket, storage.manifest_key))
        files = [ManifestFileEntry.model_validate(f) for f in draft["files"]]

        summary = build_summary(payload.doc_hash, chunks)
        self.storage.put_object(storage.bucket, storage.summary_key, json.dumps(summary).encode("utf-8"),
                                content_type="application/json")

        stats = ManifestStats(
            total_chunks=len(chunks),
            total_pages=sum(f.pages for f in files if not f.skipped),
            total_tokens=sum(c.token_estimate for c in chunks),
            chunk_size=settings.CHUNK_SIZE,
            chunk_overlap=settings.CHUNK_OVERLAP,
            embedding_model=embedding_meta["model"],
            embedding_dimensions=int(embedding_meta["dims"]),
        )
        now = datetime.now(timezone.utc)
        manifest = Manifest(
            version=payload.artifact_version,
            doc_hash=payload.doc_hash,
            org_id=payload.org_id,
            tender_id=payload.tender_id,
            created_at=now,
            updated_at=now,
            stats=stats,
            files=files,
            has_hnsw_index=bool(embedding_meta.get("has_hnsw_index")),
            checksum=Manifest.compute_checksum(stats, files, payload.doc_hash),
        )

        names = {
            f.file_id: {"path": f.path, "name": posixpath.basename(f.path), "pages": f.pages}
            for f in files
        }
        members = {
            ARTIFACT_MEMBER_MANIFEST: manifest.to_json_bytes(),
            ARTIFACT_MEMBER_CHUNKS: chunks_blob,
            ARTIFACT_MEMBER_EMBEDDINGS: self.storage.get_object(storage.bucket, storage.embeddings_key),
            ARTIFACT_MEMBER_NAMES: json.dumps(names).encode("utf-8"),
        }
        if manifest.has_hnsw_index:
            members[ARTIFACT_MEMBER_HNSW] = self.storage.get_object(storage.bucket, storage.hnsw_key)
        archive = pack_tar_gz(members)

        key = artifact_storage_key(payload.org_id, payload.tender_id, payload.doc_hash, payload.artifact_version)
        self.storage.put_object(storage.index_bucket, key, archive, content_type="application/gzip")

        self.repository.upsert_artifact(
            doc_hash=payload.doc_hash,
            org_id=payload.org_id,
            tender_id=payload.tender_id,
            status=ArtifactStatus.READY,
            version=payload.artifact_version,
            storage_key=key,
            total_chunks=stats.total_chunks,
            total_pages=stats.total_pages,
            bytes_approx=len(archive),
        )
        self.repository.update_document(payload.document_id, DocumentStatus.READY)
        self.progress.advance(payload.doc_hash, ProgressPhase.READY, 100, message="Index ready")
        self.lock.release(payload.doc_hash)
        stage_log.info("Artifact published", storage_key=key, bytes=len(archive))
        return StageOutcome(metrics={"chunk_count": stats.total_chunks, "artifact_bytes": len(archive)})
