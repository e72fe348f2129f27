import hashlib
import json
from typing import Any

from index_service.application.use_cases.stages.base_stage import PipelineStageUseCase, StageOutcome
from index_service.application.use_cases.stages.source_files import (
    CONTENT_TYPES_BY_EXTENSION,
    content_type_for,
    describe_source_file,
    is_archive,
    list_source_files,
)
from index_service.core.config import settings
from index_service.domain.models import PipelineStage, ProgressPhase, StageJobPayload


class ManifestStage(PipelineStageUseCase):
    """Hashes and probes the raw upload and writes the draft file list."""

    stage = PipelineStage.MANIFEST

    def process(self, payload: StageJobPayload, stage_log: Any) -> StageOutcome:
        self.progress.advance(payload.doc_hash, ProgressPhase.MANIFEST, 5, message="Reading upload")
        raw = self.storage.get_object(payload.storage.bucket, payload.storage.raw_key)

        raw_hash = hashlib.sha256(raw).hexdigest()
        if raw_hash != payload.doc_hash:
            stage_log.warning("Raw bytes hash differs from doc_hash", computed_hash=raw_hash)

        archive = is_archive(payload.filename, payload.mime_type)
        supported = set(CONTENT_TYPES_BY_EXTENSION.values())
        entries = []
        for source in list_source_files(raw, payload.filename, payload.mime_type, settings.MAX_ZIP_ENTRIES):
            content_type = content_type_for(source.path, None if archive else payload.mime_type)
            entries.append(describe_source_file(source, content_type if content_type in supported else None))

        draft = {
            "doc_hash": payload.doc_hash,
            "raw_sha256": raw_hash,
            "raw_size": len(raw),
            "archive": archive,
            "files": [entry.model_dump(mode="json") for entry in entries],
        }
        self.storage.put_object(
            payload.storage.bucket,
            payload.storage.manifest_key,
            json.dumps(draft).encode("utf-8"),
            content_type="application/json",
        )

        indexable = [e for e in entries if not e.skipped]
        stage_log.info("Draft manifest written", files=len(entries), indexable_files=len(indexable),
                       skipped_files=len(entries) - len(indexable))
        self.progress.advance(payload.doc_hash, ProgressPhase.MANIFEST, 10,
                              message=f"{len(indexable)} file(s) to extract")
        return StageOutcome(
            metrics={"file_count": len(indexable)},
            document_fields={"size_bytes": len(raw)},
        )
