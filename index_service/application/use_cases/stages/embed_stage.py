import json
import math
import time
from typing import Any, List, Optional

import numpy as np

from index_service.application.ports.embedding_model_port import (
    EmbeddingConnectionError,
    EmbeddingError,
    EmbeddingModelPort,
)
from index_service.application.use_cases.stages.base_stage import PipelineStageUseCase, StageOutcome
from index_service.core.config import settings
from index_service.core.metrics import EMBEDDING_FALLBACK_TOTAL
from index_service.domain.models import PipelineStage, ProgressPhase, StageJobPayload
from index_service.infrastructure.artifacts.codec import decode_jsonl_gz, encode_float16
from index_service.infrastructure.vector_search.hnsw_index import HnswVectorIndex

EMBED_PROGRESS_START = 30
EMBED_PROGRESS_END = 90


class EmbedStage(PipelineStageUseCase):
    """
    Embeds chunk texts batch by batch and writes the float16 matrix, plus an
    HNSW graph for documents large enough to need one.

    If the primary model is unreachable and a fallback model is configured,
    the whole document is re-embedded with the fallback so one build never
    mixes vectors from two models.
    """

    stage = PipelineStage.EMBED

    def __init__(
        self,
        *args,
        embedding_model: EmbeddingModelPort,
        fallback_model: Optional[EmbeddingModelPort] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.embedding_model = embedding_model
        self.fallback_model = fallback_model

    def process(self, payload: StageJobPayload, stage_log: Any) -> StageOutcome:
        storage = payload.storage
        chunks = decode_jsonl_gz(self.storage.get_object(storage.bucket, storage.chunks_key))
        texts = [c.get("text") or "" for c in chunks]

        model = self.embedding_model
        try:
            matrix = self._embed_all(payload.doc_hash, model, texts)
        except EmbeddingConnectionError as e:
            if self.fallback_model is None:
                raise
            stage_log.warning("Primary embedding model unreachable, using fallback model",
                              primary=model.model_name, fallback=self.fallback_model.model_name, error=str(e))
            EMBEDDING_FALLBACK_TOTAL.labels(reason="connection_error").inc()
            model = self.fallback_model
            matrix = self._embed_all(payload.doc_hash, model, texts)

        self.storage.put_object(storage.bucket, storage.embeddings_key, encode_float16(matrix),
                                content_type="application/octet-stream")

        has_hnsw = len(texts) >= settings.HNSW_MIN_CHUNKS
        if has_hnsw:
            index = HnswVectorIndex.build(matrix, m=settings.HNSW_M,
                                          ef_construction=settings.HNSW_EF_CONSTRUCTION,
                                          ef_search=settings.HNSW_EF_SEARCH)
            try:
                self.storage.put_object(storage.bucket, storage.hnsw_key, index.serialize(),
                                        content_type="application/octet-stream")
            finally:
                index.close()

        meta = {
            "model": model.model_name,
            "dims": int(matrix.shape[1]),
            "count": int(matrix.shape[0]),
            "batches": math.ceil(len(texts) / settings.EMBED_BATCH_SIZE),
            "has_hnsw_index": has_hnsw,
        }
        self.storage.put_object(storage.bucket, storage.embedding_meta_key, json.dumps(meta).encode("utf-8"),
                                content_type="application/json")
        stage_log.info("Embeddings written", model=meta["model"], dims=meta["dims"], has_hnsw_index=has_hnsw)
        return StageOutcome(metrics={"chunk_count": len(texts)})

    def _embed_all(self, doc_hash: str, model: EmbeddingModelPort, texts: List[str]) -> np.ndarray:
        batch_size = settings.EMBED_BATCH_SIZE
        total_batches = max(1, math.ceil(len(texts) / batch_size))
        vectors: List[List[float]] = []
        started = time.monotonic()

        for batch_no, start in enumerate(range(0, len(texts), batch_size), start=1):
            batch = texts[start:start + batch_size]
            embedded = model.embed_texts(batch)
            if len(embedded) != len(batch):
                raise EmbeddingError(f"{model.model_name} returned {len(embedded)} vectors for {len(batch)} texts")
            vectors.extend(embedded)

            elapsed = time.monotonic() - started
            eta = elapsed / batch_no * (total_batches - batch_no)
            percent = EMBED_PROGRESS_START + (EMBED_PROGRESS_END - EMBED_PROGRESS_START) * batch_no / total_batches
            self.progress.advance(doc_hash, ProgressPhase.EMBEDDING, percent,
                                  batches_done=batch_no, total_batches=total_batches, eta_seconds=eta)

        matrix = np.asarray(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[0] != len(texts):
            raise EmbeddingError(f"{model.model_name} returned inconsistent vector widths")
        return matrix
