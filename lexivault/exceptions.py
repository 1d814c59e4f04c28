"""Custom exception classes for the document pipeline and search."""


class LexiVaultError(Exception):
    """Base exception for all LexiVault errors."""
    pass


class DocumentProcessingError(LexiVaultError):
    """Base exception for document processing errors."""
    pass


class SetupError(DocumentProcessingError):
    """Raised when a document run cannot be set up (fatal to the whole run)."""
    pass


class DocumentNotFoundError(SetupError):
    """Raised when a document record does not exist."""
    pass


class AssetNotFoundError(SetupError):
    """Raised when a stored artifact cannot be located."""
    pass


class DocumentCorruptedError(SetupError):
    """Raised when a document file cannot be parsed as a PDF."""
    pass


class DocumentEmptyError(SetupError):
    """Raised when a document has no pages."""
    pass


class PageProcessingError(DocumentProcessingError):
    """Raised when a single page cannot be processed."""
    pass


class PageNotFoundError(PageProcessingError):
    """Raised when a page unit record does not exist."""
    pass


class StorageError(DocumentProcessingError):
    """Raised when reading or writing the backing stores fails."""
    pass


class RecognitionError(LexiVaultError):
    """Raised when a call to the recognition service fails."""
    pass


class EmptyExtractionError(RecognitionError):
    """Raised when text extraction returns no text."""
    pass


class EmbeddingError(RecognitionError):
    """Raised when embedding generation fails."""
    pass


class RecognitionResponseError(RecognitionError):
    """Raised when the recognition service returns a malformed response."""
    pass


class RecognitionTimeoutError(RecognitionError):
    """Raised when a recognition call exceeds its time budget."""
    pass


class SearchError(LexiVaultError):
    """Raised when a search retrieval path fails."""
    pass


class ValidationError(LexiVaultError):
    """Raised when an uploaded document fails validation."""
    pass


class FileTypeNotSupportedError(ValidationError):
    """Raised when an unsupported file type is encountered."""
    pass


class FileSizeExceededError(ValidationError):
    """Raised when file size exceeds the maximum allowed."""
    pass


class ServiceUnavailableError(LexiVaultError):
    """Raised when required services are not available."""
    pass


class ProcessingStateError(LexiVaultError):
    """Raised when a document's processing state does not allow the requested operation."""
    pass
