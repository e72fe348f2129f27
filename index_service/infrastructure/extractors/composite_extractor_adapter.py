# File: index_service/infrastructure/extractors/composite_extractor_adapter.py
from typing import Dict, Any, Tuple, List
import structlog

from index_service.application.ports.extraction_port import ExtractionPort, UnsupportedContentTypeError, ExtractionError
from .base_extractor import BaseExtractorAdapter

log = structlog.get_logger(__name__)

class CompositeExtractorAdapter(BaseExtractorAdapter):
    """
    Un adaptador compuesto que delega la extracción al adaptador apropiado
    basado en el content_type.
    """
    def __init__(self, extractors: Dict[str, ExtractionPort]):
        self.extractors = extractors
        self.log = log.bind(component="CompositeExtractorAdapter")
        self.log.info("Initialized with supported content types", types=list(extractors.keys()))

    def supports(self, content_type: str) -> bool:
        return content_type.split(';')[0].strip().lower() in self.extractors

    def extract_text(
        self,
        file_bytes: bytes,
        filename: str,
        content_type: str
    ) -> Tuple[List[Tuple[int, str]], Dict[str, Any]]:
        # Normalizar content_type (ej. con parámetros charset)
        normalized_content_type = content_type.split(';')[0].strip().lower()
        extractor = self.extractors.get(normalized_content_type)

        if not extractor:
            self.log.warning("Unsupported content type for composite extraction", content_type=content_type)
            raise UnsupportedContentTypeError(f"No extractor registered for content type: {content_type}")

        try:
            return extractor.extract_text(file_bytes, filename, normalized_content_type)
        except ExtractionError:
            raise
        except Exception as e:
            raise self._handle_extraction_error(e, filename, f"CompositeAdapter -> {type(extractor).__name__}") from e
