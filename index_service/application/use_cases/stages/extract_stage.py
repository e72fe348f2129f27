import json
from typing import Any, Dict, List

from index_service.application.ports.extraction_port import ExtractionPort
from index_service.application.use_cases.stages.base_stage import PipelineStageUseCase, StageOutcome
from index_service.application.use_cases.stages.source_files import content_type_for, read_source_file
from index_service.domain.models import ManifestFileEntry, PipelineStage, ProgressPhase, StageJobPayload
from index_service.infrastructure.artifacts.codec import encode_jsonl_gz


class ExtractStage(PipelineStageUseCase):
    """Extracts per-page text for every indexable file into extracted.jsonl.gz."""

    stage = PipelineStage.EXTRACT

    def __init__(self, *args, extractor: ExtractionPort, **kwargs):
        super().__init__(*args, **kwargs)
        self.extractor = extractor

    def process(self, payload: StageJobPayload, stage_log: Any) -> StageOutcome:
        storage = payload.storage
        draft = json.loads(self.storage.get_object(storage.bucket, storage.manifest_key))
        entries = [ManifestFileEntry.model_validate(f) for f in draft["files"]]
        raw = self.storage.get_object(storage.bucket, storage.raw_key)

        rows: List[Dict[str, Any]] = []
        for entry in entries:
            if entry.skipped:
                continue
            content_type = content_type_for(entry.path, None if draft.get("archive") else payload.mime_type)
            data = read_source_file(raw, payload.filename, payload.mime_type, entry.path)
            pages, meta = self.extractor.extract_text(data, entry.path, content_type or "application/octet-stream")
            entry.pages = max(entry.pages, int(meta.get("total_pages") or 0))
            for page_number, page_text in pages:
                if page_text:
                    rows.append({"file_id": entry.file_id, "page": page_number, "text": page_text})
            stage_log.debug("File extracted", path=entry.path, pages_with_text=len(pages))

        self.storage.put_object(storage.bucket, storage.extracted_key, encode_jsonl_gz(rows),
                                content_type="application/gzip")
        # page counts from the extractor are more reliable than the byte probe
        draft["files"] = [e.model_dump(mode="json") for e in entries]
        self.storage.put_object(storage.bucket, storage.manifest_key, json.dumps(draft).encode("utf-8"),
                                content_type="application/json")

        total_pages = sum(e.pages for e in entries if not e.skipped)
        self.progress.advance(payload.doc_hash, ProgressPhase.MANIFEST, 20,
                              message=f"Extracted {len(rows)} page(s)")
        return StageOutcome(
            metrics={"extracted_pages": len(rows)},
            document_fields={"pages": total_pages, "has_text": bool(rows)},
        )
