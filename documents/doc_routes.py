"""
Document endpoints.

Files are uploaded straight to the blob store by the client; these routes
only record, list and delete the resulting references.

- POST /documents - Register an uploaded file for the caller
- GET /documents - Own documents (admin: all, with owner name and country)
- DELETE /documents/{document_id} - Delete one of the caller's documents
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy.orm import Session

from auth.identity import current_identity
from delegation.database import get_db
from delegation.routes import as_http_error
from delegation.schemas import CreateDocumentRequest, DocumentResponse
from delegation.service import DocumentService

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("", response_model=DocumentResponse, status_code=201)
def create_document(
    request: CreateDocumentRequest,
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    """
    Register a file the caller uploaded. `file_url` is stored verbatim.
    """
    try:
        logger.info(f"[DOCS] {user_id} registering {request.file_name}")
        return DocumentService.create_document(
            db=db,
            caller_id=user_id,
            file_name=request.file_name,
            file_url=request.file_url
        )
    except Exception as e:
        raise as_http_error(e, "creating document")


@router.get("", response_model=List[DocumentResponse])
def list_documents(
    user_id: str = Depends(current_identity),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    try:
        return DocumentService.list_documents(db=db, caller_id=user_id, skip=skip, limit=limit)
    except Exception as e:
        raise as_http_error(e, "listing documents")


@router.delete("/{document_id}", status_code=204)
def delete_document(
    document_id: str,
    user_id: str = Depends(current_identity),
    db: Session = Depends(get_db)
):
    try:
        DocumentService.delete_document(db=db, caller_id=user_id, document_id=document_id)
    except Exception as e:
        raise as_http_error(e, "deleting document")
