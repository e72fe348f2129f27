# index_service/application/ports/embedding_model_port.py
import abc
from typing import List, Dict, Any

class EmbeddingError(Exception):
    """Base exception for embedding failures."""
    pass

class EmbeddingConnectionError(EmbeddingError):
    """The embedding provider could not be reached (network, timeout, reset)."""
    pass

class EmbeddingModelPort(abc.ABC):
    """
    Abstract port defining the interface for an embedding model.
    """

    @property
    @abc.abstractmethod
    def model_name(self) -> str:
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def dimension(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generates embeddings for a list of texts.

        Args:
            texts: A list of strings to embed.

        Returns:
            A list of embeddings, one per input text, in input order.

        Raises:
            EmbeddingConnectionError: If the provider is unreachable.
            EmbeddingError: If embedding generation fails for any other reason.
        """
        raise NotImplementedError

    def get_model_info(self) -> Dict[str, Any]:
        return {"model_name": self.model_name, "dimension": self.dimension}
