"""Upload endpoint for new documents."""
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from lexivault.api.dependencies import get_document_service, to_http_exception
from lexivault.api.schemas import DocumentResponse
from lexivault.services.document_service import DocumentService


router = APIRouter()


@router.post("/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    file: Annotated[UploadFile, File(...)],
    title: Annotated[str, Form(..., min_length=1)],
    category: Annotated[str, Form(..., min_length=1)],
    year: Annotated[int, Form(..., ge=1000, le=9999)],
    description: Annotated[Optional[str], Form()] = None,
    document_service: DocumentService = Depends(get_document_service),
):
    """
    Upload a scanned PDF and schedule its processing.

    The response is returned as soon as the document record exists;
    recognition runs in the background and is observable through the
    progress endpoint.

    Args:
        file: PDF file to upload
        title: Document title
        category: Document category
        year: Publication year
        description: Optional description
        document_service: Document service instance

    Returns:
        DocumentResponse of the created document (status "processing")
    """
    try:
        file_content = await file.read()
        document = document_service.create_document(
            file_content=file_content,
            filename=file.filename,
            title=title.strip(),
            category=category.strip(),
            year=year,
            description=description,
        )
    except Exception as e:
        raise to_http_exception(e) from e

    return DocumentResponse.from_document(document)
