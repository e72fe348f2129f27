class IndexServiceError(Exception):
    """Base exception for indexing pipeline errors."""
    pass

class DocumentNotFoundError(IndexServiceError):
    """The document does not exist or belongs to another tenant."""
    pass

class UnprocessableDocumentError(IndexServiceError):
    """The document lacks the storage coordinates needed to index it."""
    pass

class NoExtractableTextError(IndexServiceError):
    """Extraction produced no text at all. Retrying will not help."""
    pass

class ArtifactIntegrityError(IndexServiceError):
    """A packaged artifact does not match its own manifest."""
    pass

class ArtifactNotReadyError(IndexServiceError):
    """The document has no READY artifact to query."""
    pass

class RetryNotAllowedError(IndexServiceError):
    """Only failed documents can be resumed."""
    pass
