import hashlib
from typing import Any, List

from index_service.application.ports.chunking_port import ChunkingPort
from index_service.application.use_cases.stages.base_stage import PipelineStageUseCase, StageOutcome
from index_service.core.config import settings
from index_service.core.exceptions import NoExtractableTextError
from index_service.domain.models import ChunkRecord, PipelineStage, ProgressPhase, StageJobPayload
from index_service.infrastructure.artifacts.codec import decode_jsonl_gz, encode_jsonl_gz


class ChunkStage(PipelineStageUseCase):
    """Splits every extracted page into overlapping windows and writes chunks.jsonl.gz."""

    stage = PipelineStage.CHUNK

    def __init__(self, *args, chunker: ChunkingPort, **kwargs):
        super().__init__(*args, **kwargs)
        self.chunker = chunker

    def process(self, payload: StageJobPayload, stage_log: Any) -> StageOutcome:
        storage = payload.storage
        pages = decode_jsonl_gz(self.storage.get_object(storage.bucket, storage.extracted_key))

        chunks: List[ChunkRecord] = []
        for page in pages:
            for offset, window in self.chunker.chunk_text(page["text"], settings.CHUNK_SIZE, settings.CHUNK_OVERLAP):
                chunks.append(ChunkRecord(
                    chunk_id=ChunkRecord.make_id(payload.doc_hash, len(chunks)),
                    file_id=page["file_id"],
                    page=int(page["page"]),
                    offset=offset,
                    length=len(window),
                    md5=hashlib.md5(window.encode("utf-8")).hexdigest(),
                    text=window,
                ))

        if not chunks:
            raise NoExtractableTextError("no text extracted; probably scanned PDF")

        self.storage.put_object(
            storage.bucket,
            storage.chunks_key,
            encode_jsonl_gz(c.model_dump(mode="json") for c in chunks),
            content_type="application/gzip",
        )
        self.progress.advance(payload.doc_hash, ProgressPhase.MANIFEST, 30, message=f"{len(chunks)} chunk(s)")
        return StageOutcome(metrics={"chunk_count": len(chunks)})
