import re

import fitz  # PyMuPDF
import structlog
from typing import List, Tuple, Dict, Any

from index_service.application.ports.extraction_port import UnsupportedContentTypeError
from index_service.infrastructure.extractors.base_extractor import BaseExtractorAdapter, normalize_whitespace


log = structlog.get_logger(__name__)

_PAGE_OBJECT_RE = re.compile(rb"/Type\s*/Page\b")
_TEXT_OBJECT_RE = re.compile(rb"\bBT\b")

def probe_pdf(file_bytes: bytes) -> Dict[str, Any]:
    """Cheap page count and text-presence probe over the raw PDF bytes, without parsing."""
    return {
        "pages": len(_PAGE_OBJECT_RE.findall(file_bytes)),
        "has_text": _TEXT_OBJECT_RE.search(file_bytes) is not None,
    }

class PdfAdapter(BaseExtractorAdapter):
    """Adaptador para extraer texto de archivos PDF usando PyMuPDF."""

    SUPPORTED_CONTENT_TYPES = ["application/pdf"]

    def extract_text(
        self,
        file_bytes: bytes,
        filename: str,
        content_type: str
    ) -> Tuple[List[Tuple[int, str]], Dict[str, Any]]:
        if content_type not in self.SUPPORTED_CONTENT_TYPES:
            raise UnsupportedContentTypeError(f"PdfAdapter does not support content type: {content_type}")

        log.debug("PdfAdapter: Extracting text and pages from PDF bytes", filename=filename)
        pages_content: List[Tuple[int, str]] = []
        extraction_metadata: Dict[str, Any] = {"total_pages": 0, "total_pages_extracted": 0}

        try:
            with fitz.open(stream=file_bytes, filetype="pdf") as doc:
                extraction_metadata["total_pages"] = len(doc)
                for page_num_zero_based, page in enumerate(doc):
                    page_num_one_based = page_num_zero_based + 1
                    page_text = normalize_whitespace(page.get_text("text") or "")
                    if page_text:
                        pages_content.append((page_num_one_based, page_text))
                    else:
                        log.debug("PdfAdapter: Skipping empty page", page=page_num_one_based)

            extraction_metadata["total_pages_extracted"] = len(pages_content)
            log.info("PdfAdapter: PDF extraction successful", filename=filename,
                     pages_with_text=len(pages_content), total_doc_pages=extraction_metadata["total_pages"])
            return pages_content, extraction_metadata
        except Exception as e:
            raise self._handle_extraction_error(e, filename, "PdfAdapter") from e
