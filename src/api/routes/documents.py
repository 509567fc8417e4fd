"""
Document endpoints.

Owner-scoped reads of documents created by the document tools and of the
suggestions stored for them, plus saving a version the user edited by hand.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from api.dependencies import Store
from api.middleware.auth import CurrentUser
from core.exceptions import NotFoundError, UnauthorizedError
from core.persistence import ChatStore
from models.api_models import DocumentResponse, SaveDocumentRequest, UserInfo
from models.store_models import Document
from utils.logger import logger

router = APIRouter()


async def _owned_document(store: ChatStore, document_id: str, user: UserInfo) -> Document:
    document = await store.get_document_by_id(document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    if document.user_id != user.id:
        raise UnauthorizedError("Document", document_id)
    return document


def _response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        title=document.title,
        content=document.content,
        created_at=document.created_at,
    )


@router.get("/documents/{document_id}", response_model=DocumentResponse, summary="Get a document")
async def get_document(document_id: str, user: CurrentUser, store: Store) -> DocumentResponse:
    """Latest version of the document."""
    document = await _owned_document(store, document_id, user)
    return _response(document)


@router.post("/documents/{document_id}", response_model=DocumentResponse, summary="Save a document version")
async def save_document(
    document_id: str, body: SaveDocumentRequest, user: CurrentUser, store: Store
) -> DocumentResponse:
    """Store the edited text as the newest version. An unknown id starts a new document."""
    current = await store.get_document_by_id(document_id)
    if current is not None and current.user_id != user.id:
        raise UnauthorizedError("Document", document_id)

    document = await store.save_document(document_id, body.title, body.content, user.id)
    logger.info(f"Saved document {document_id}: {len(body.content):,} chars")
    return _response(document)


@router.get("/documents/{document_id}/suggestions", summary="List suggestions for a document")
async def list_suggestions(document_id: str, user: CurrentUser, store: Store) -> list[dict[str, Any]]:
    """Stored suggestions, camelCase keys as streamed in ``suggestion`` frames."""
    await _owned_document(store, document_id, user)
    suggestions = await store.get_suggestions_by_document_id(document_id)
    return [suggestion.to_payload() for suggestion in suggestions]
