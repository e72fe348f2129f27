# File: index_service/infrastructure/extractors/__init__.py
from .base_extractor import BaseExtractorAdapter, normalize_whitespace
from .pdf_adapter import PdfAdapter, probe_pdf
from .txt_adapter import TxtAdapter
from .composite_extractor_adapter import CompositeExtractorAdapter

__all__ = [
    "BaseExtractorAdapter",
    "PdfAdapter",
    "TxtAdapter",
    "CompositeExtractorAdapter",
    "normalize_whitespace",
    "probe_pdf",
]
