from typing import List, Optional, Sequence, Union

import numpy as np

from index_service.application.ports.vector_search_port import VectorFilter, VectorMatch, VectorSearchPort


def as_query_vector(query: Union[Sequence[float], np.ndarray], dims: int) -> np.ndarray:
    vector = np.asarray(query, dtype=np.float32).reshape(-1)
    if vector.shape[0] != dims:
        raise ValueError(f"Query has {vector.shape[0]} dimensions, index expects {dims}")
    return vector


class BruteForceVectorIndex(VectorSearchPort):
    """Exact inner-product scan over the full embedding matrix."""

    def __init__(self, matrix: np.ndarray):
        if matrix.ndim != 2:
            raise ValueError("Embedding matrix must be two-dimensional")
        self._matrix = np.ascontiguousarray(matrix, dtype=np.float32)

    @property
    def dims(self) -> int:
        return int(self._matrix.shape[1])

    def search(
        self,
        query: Union[Sequence[float], np.ndarray],
        top_k: int,
        filter: Optional[VectorFilter] = None,
    ) -> List[VectorMatch]:
        if top_k <= 0 or self._matrix.shape[0] == 0:
            return []
        scores = self._matrix @ as_query_vector(query, self.dims)
        order = np.argsort(-scores, kind="stable")
        matches: List[VectorMatch] = []
        for idx in order:
            row = int(idx)
            if filter is not None and not filter(row):
                continue
            matches.append(VectorMatch(row, float(scores[row])))
            if len(matches) >= top_k:
                break
        return matches

    def close(self) -> None:
        self._matrix = np.zeros((0, self.dims), dtype=np.float32)
