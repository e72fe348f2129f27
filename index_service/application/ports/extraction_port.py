from abc import ABC, abstractmethod
from typing import List, Tuple, Any, Dict

class ExtractionError(Exception):
    """Base exception for extraction errors."""
    pass

class UnsupportedContentTypeError(ExtractionError):
    """Exception raised when a content type is not supported for extraction."""
    pass

class ExtractionPort(ABC):
    """
    Interface (Port) para la extracción de texto de documentos.
    """

    @abstractmethod
    def extract_text(
        self,
        file_bytes: bytes,
        filename: str,
        content_type: str
    ) -> Tuple[List[Tuple[int, str]], Dict[str, Any]]:
        """
        Extrae texto de los bytes de un archivo, página por página.

        Args:
            file_bytes: Contenido del archivo en bytes.
            filename: Nombre original del archivo (para logging y metadatos).
            content_type: Tipo MIME del archivo.

        Returns:
            Una tupla conteniendo:
            - Lista de tuplas (page_number, page_text), 1-based. Formatos sin
              páginas (TXT) devuelven una sola página.
            - Un diccionario con metadatos de la extracción
              (ej. {'total_pages': 10, 'total_pages_extracted': 9}).

        Raises:
            UnsupportedContentTypeError: Si el content_type no es soportado.
            ExtractionError: Para otros errores durante la extracción.
        """
        pass
