"""
Document tools for Quill Chat.
Drafts and revises documents shown beside the conversation.

Both tools stream their progress on their own sub-stream and save the
document before the sub-stream's ``finish``. Every check (existence,
ownership) happens before the first event is written.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from core.constants import (
    FRAME_CLEAR,
    FRAME_ID,
    FRAME_TEXT_DELTA,
    FRAME_TITLE,
    TOOL_CREATE_DOCUMENT,
    TOOL_UPDATE_DOCUMENT,
)
from core.exceptions import NotFoundError, ToolExecutionError, UnauthorizedError
from core.prompts import DOCUMENT_DRAFT_PROMPT, DOCUMENT_UPDATE_PROMPT, build_update_prompt
from models.chat_models import generate_id
from models.store_models import Document
from tools.registry import ToolContext, ToolSpec
from utils.logger import logger


class CreateDocumentArgs(BaseModel):
    title: str = Field(..., min_length=1, max_length=200, description="Title of the document")


class UpdateDocumentArgs(BaseModel):
    id: str = Field(..., min_length=1, description="The ID of the document to update")
    description: str = Field(..., min_length=1, description="The description of changes that need to be made")


async def create_document(args: CreateDocumentArgs, ctx: ToolContext) -> dict[str, Any]:
    """Draft a new document from its title.

    Stream order: ``id``, ``title``, ``clear``, ``text-delta``..., ``finish``.
    """
    document_id = generate_id()
    chunks: list[str] = []

    async with ctx.substream() as stream:
        await stream.append(FRAME_ID, document_id)
        await stream.append(FRAME_TITLE, args.title)
        await stream.append(FRAME_CLEAR, "")

        async for delta in ctx.gateway.stream_text(DOCUMENT_DRAFT_PROMPT, args.title, model=ctx.model):
            chunks.append(delta)
            await stream.append(FRAME_TEXT_DELTA, delta)

        content = "".join(chunks)
        if not content:
            raise ToolExecutionError(TOOL_CREATE_DOCUMENT, "The model returned no content for the document")
        await ctx.store.save_document(document_id, args.title, content, ctx.user_id)

    logger.info(f"Created document {document_id}: {len(content):,} chars", func="create_document")
    return {
        "id": document_id,
        "title": args.title,
        "content": content,
        "message": "Document created successfully",
    }


async def load_owned_document(document_id: str, ctx: ToolContext) -> Document:
    """Current version of a document owned by the caller.

    Raises:
        NotFoundError: If no such document exists
        UnauthorizedError: If it belongs to another user
    """
    document = await ctx.store.get_document_by_id(document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    if document.user_id != ctx.user_id:
        raise UnauthorizedError("Document", document_id)
    return document


async def update_document(args: UpdateDocumentArgs, ctx: ToolContext) -> dict[str, Any]:
    """Rewrite a document according to ``description`` and save it as a new version.

    Stream order: ``clear`` (payload: title), ``text-delta``..., ``finish``.
    """
    document = await load_owned_document(args.id, ctx)
    chunks: list[str] = []

    async with ctx.substream() as stream:
        await stream.append(FRAME_CLEAR, document.title)

        prompt = build_update_prompt(document.content or "", args.description)
        async for delta in ctx.gateway.stream_text(DOCUMENT_UPDATE_PROMPT, prompt, model=ctx.model):
            chunks.append(delta)
            await stream.append(FRAME_TEXT_DELTA, delta)

        content = "".join(chunks)
        if not content:
            raise ToolExecutionError(TOOL_UPDATE_DOCUMENT, "The model returned no content for the update")
        await ctx.store.save_document(document.id, document.title, content, ctx.user_id)

    logger.info(f"Updated document {document.id}: {len(content):,} chars", func="update_document")
    return {
        "id": document.id,
        "title": document.title,
        "content": content,
        "message": "Document updated successfully",
    }


CREATE_DOCUMENT_TOOL = ToolSpec(
    name=TOOL_CREATE_DOCUMENT,
    description="Create a document for writing activities. The content is generated from the title.",
    args_model=CreateDocumentArgs,
    executor=create_document,
)

UPDATE_DOCUMENT_TOOL = ToolSpec(
    name=TOOL_UPDATE_DOCUMENT,
    description="Update a document with the given description",
    args_model=UpdateDocumentArgs,
    executor=update_document,
)
