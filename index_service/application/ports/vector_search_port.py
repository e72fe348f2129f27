from abc import ABC, abstractmethod
from typing import Callable, List, NamedTuple, Optional, Sequence, Union

import numpy as np

class VectorMatch(NamedTuple):
    index: int
    score: float

VectorFilter = Callable[[int], bool]

class VectorSearchPort(ABC):
    """
    Capability interface over a loaded embedding matrix.
    Implementations are chosen when an artifact is loaded, never at query time.
    """

    @property
    @abstractmethod
    def dims(self) -> int:
        pass

    @abstractmethod
    def search(
        self,
        query: Union[Sequence[float], np.ndarray],
        top_k: int,
        filter: Optional[VectorFilter] = None,
    ) -> List[VectorMatch]:
        """
        Ranks stored vectors against a query.

        Args:
            query: Query vector of length `dims`.
            top_k: Maximum number of matches to return.
            filter: Optional predicate on the row index; rows for which it
                returns False are never returned.

        Returns:
            Matches ordered by descending score.

        Raises:
            ValueError: If the query width does not match `dims`.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Releases any native resources held by the index."""
        pass
