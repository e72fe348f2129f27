from typing import List, Optional, Sequence, Union

import faiss
import numpy as np
import structlog

from index_service.application.ports.vector_search_port import VectorFilter, VectorMatch, VectorSearchPort
from index_service.infrastructure.vector_search.brute_force_index import as_query_vector

log = structlog.get_logger(__name__)


class HnswVectorIndex(VectorSearchPort):
    """Approximate search over a FAISS HNSW graph with the inner-product metric."""

    def __init__(self, index: "faiss.Index", ef_search: int = 64):
        self._index = index
        self._dims = int(index.d)
        self._ef_search = ef_search
        faiss.downcast_index(index).hnsw.efSearch = ef_search

    @classmethod
    def build(cls, matrix: np.ndarray, m: int = 32, ef_construction: int = 200, ef_search: int = 64) -> "HnswVectorIndex":
        vectors = np.ascontiguousarray(matrix, dtype=np.float32)
        index = faiss.IndexHNSWFlat(int(vectors.shape[1]), m, faiss.METRIC_INNER_PRODUCT)
        index.hnsw.efConstruction = ef_construction
        index.add(vectors)
        log.debug("HNSW index built", vectors=int(vectors.shape[0]), dims=int(vectors.shape[1]), m=m)
        return cls(index, ef_search=ef_search)

    @classmethod
    def deserialize(cls, payload: bytes, ef_search: int = 64) -> "HnswVectorIndex":
        index = faiss.deserialize_index(np.frombuffer(payload, dtype=np.uint8))
        return cls(index, ef_search=ef_search)

    def serialize(self) -> bytes:
        return faiss.serialize_index(self._index).tobytes()

    @property
    def dims(self) -> int:
        return self._dims

    def search(
        self,
        query: Union[Sequence[float], np.ndarray],
        top_k: int,
        filter: Optional[VectorFilter] = None,
    ) -> List[VectorMatch]:
        total = int(self._index.ntotal) if self._index is not None else 0
        if top_k <= 0 or total == 0:
            return []
        vector = as_query_vector(query, self._dims).reshape(1, -1)

        # A filter can reject candidates, so widen the window until enough survive
        window = min(total, top_k if filter is None else top_k * 4)
        while True:
            scores, ids = self._index.search(vector, window)
            matches: List[VectorMatch] = []
            for score, idx in zip(scores[0], ids[0]):
                if idx < 0:
                    continue
                if filter is not None and not filter(int(idx)):
                    continue
                matches.append(VectorMatch(int(idx), float(score)))
            if len(matches) >= top_k or window >= total:
                return matches[:top_k]
            window = min(total, window * 2)

    def close(self) -> None:
        if self._index is not None:
            self._index.reset()
            self._index = None
