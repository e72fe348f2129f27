from abc import ABC, abstractmethod
from typing import List, Tuple

class ChunkingError(Exception):
    """Base exception for chunking errors."""
    pass

class ChunkingPort(ABC):
    """
    Interface (Port) para la división de texto en chunks.
    """

    @abstractmethod
    def chunk_text(
        self,
        text_content: str,
        chunk_size: int,
        chunk_overlap: int
    ) -> List[Tuple[int, str]]:
        """
        Divide un texto en ventanas de caracteres con solapamiento.

        Args:
            text_content: El texto a dividir.
            chunk_size: Tamaño de cada ventana en caracteres.
            chunk_overlap: Caracteres compartidos con la ventana anterior.

        Returns:
            Lista de tuplas (offset, chunk_text), en orden. Las ventanas
            vacías o de solo espacios se descartan.

        Raises:
            ChunkingError: Si los parámetros no son válidos.
        """
        pass
