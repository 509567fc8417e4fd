"""
Writing suggestions tool.
Generates up to MAX_SUGGESTIONS edits for a document and stores exactly the ones streamed.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from core.constants import FRAME_SUGGESTION, MAX_SUGGESTIONS, TOOL_REQUEST_SUGGESTIONS
from core.exceptions import EmptyContentError
from core.prompts import SUGGESTIONS_PROMPT
from models.store_models import Suggestion, SuggestionDraft
from tools.documents import load_owned_document
from tools.registry import ToolContext, ToolSpec
from utils.logger import logger


class RequestSuggestionsArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(
        ..., alias="documentId", min_length=1, description="The ID of the document to request edits"
    )


async def request_suggestions(args: RequestSuggestionsArgs, ctx: ToolContext) -> dict[str, Any]:
    document = await load_owned_document(args.document_id, ctx)
    if not document.content:
        raise EmptyContentError("Document", document.id)

    suggestions: list[Suggestion] = []
    async with ctx.substream() as stream:
        async for draft in ctx.gateway.stream_objects(
            SUGGESTIONS_PROMPT,
            document.content,
            SuggestionDraft,
            model=ctx.model,
            limit=MAX_SUGGESTIONS,
        ):
            suggestion = Suggestion(
                document_id=document.id,
                document_created_at=document.created_at,
                original_text=draft.original_sentence,
                suggested_text=draft.suggested_sentence,
                description=draft.description,
                user_id=ctx.user_id,
            )
            await stream.append(FRAME_SUGGESTION, suggestion.to_payload())
            suggestions.append(suggestion)

        if suggestions:
            await ctx.store.save_suggestions(suggestions)

    logger.info(f"Stored {len(suggestions)} suggestions for document {document.id}", func="request_suggestions")
    return {
        "id": document.id,
        "title": document.title,
        "message": "Suggestions have been added to the document",
        "count": len(suggestions),
    }


SUGGESTIONS_TOOL = ToolSpec(
    name=TOOL_REQUEST_SUGGESTIONS,
    description="Request suggestions for a document",
    args_model=RequestSuggestionsArgs,
    executor=request_suggestions,
)
