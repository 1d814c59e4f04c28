"""Service accessors and error mapping shared by the route modules."""
from fastapi import HTTPException

from lexivault.exceptions import (
    DocumentNotFoundError,
    LexiVaultError,
    ProcessingStateError,
    SearchError,
    ServiceUnavailableError,
    ValidationError,
)
from lexivault.services.document_service import DocumentService
from lexivault.services.search_service import SearchService
from lexivault.utils.logger import logger


def get_document_service() -> DocumentService:
    """Get document service from main app."""
    from lexivault.main import document_service
    if document_service is None:
        raise HTTPException(status_code=503, detail="Document service not initialized")
    return document_service


def get_search_service() -> SearchService:
    """Get search service from main app."""
    from lexivault.main import search_service
    if search_service is None:
        raise HTTPException(status_code=503, detail="Search service not initialized")
    return search_service


def to_http_exception(error: Exception) -> HTTPException:
    """Convert a service exception to the matching HTTP error."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ProcessingStateError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ServiceUnavailableError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, SearchError):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, LexiVaultError):
        return HTTPException(status_code=500, detail=str(error))

    logger.error(f"Unexpected error: {str(error)}", exc_info=error)
    return HTTPException(status_code=500, detail=f"Internal error: {str(error)}")
