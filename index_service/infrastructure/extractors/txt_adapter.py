import structlog
from typing import Tuple, Dict, Any, List

from index_service.application.ports.extraction_port import ExtractionError, UnsupportedContentTypeError
from index_service.infrastructure.extractors.base_extractor import BaseExtractorAdapter, normalize_whitespace

log = structlog.get_logger(__name__)

class TxtAdapter(BaseExtractorAdapter):
    """Adaptador para extraer texto de archivos TXT como una única página."""

    SUPPORTED_CONTENT_TYPES = ["text/plain"]
    ENCODINGS = ("utf-8", "cp1252", "latin-1")

    def extract_text(
        self,
        file_bytes: bytes,
        filename: str,
        content_type: str
    ) -> Tuple[List[Tuple[int, str]], Dict[str, Any]]:
        if content_type not in self.SUPPORTED_CONTENT_TYPES:
            raise UnsupportedContentTypeError(f"TxtAdapter does not support content type: {content_type}")

        text = None
        extraction_metadata: Dict[str, Any] = {"total_pages": 1}
        for enc in self.ENCODINGS:
            try:
                text = file_bytes.decode(enc)
                extraction_metadata["encoding_used"] = enc
                break
            except UnicodeDecodeError:
                log.debug(f"TxtAdapter: Failed to decode with {enc}, trying next.", filename=filename)

        if text is None:
            raise ExtractionError(f"Could not decode TXT file {filename} with tried encodings.")

        normalized = normalize_whitespace(text)
        extraction_metadata["total_pages_extracted"] = 1 if normalized else 0
        log.info("TxtAdapter: TXT extraction successful", filename=filename, length=len(normalized))
        return ([(1, normalized)] if normalized else []), extraction_metadata
