"""
Configuration endpoints.

Exposes the model catalog for the client's model selector.
"""

from __future__ import annotations

from fastapi import APIRouter

from core.constants import DEFAULT_MODEL_ID, MODEL_CONFIGS
from models.api_models import ModelInfo, ModelsResponse

router = APIRouter()


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List chat models",
    responses={
        200: {
            "content": {
                "application/json": {
                    "example": {
                        "models": [
                            {
                                "id": "quill-mini",
                                "label": "Quill Mini",
                                "description": "Small model, for fast, lightweight tasks",
                                "tools": ["getWeather", "createDocument", "updateDocument", "requestSuggestions"],
                            }
                        ],
                        "default_model": "quill-mini",
                    }
                }
            }
        }
    },
)
async def list_models() -> ModelsResponse:
    """Models in display order, with the tools each one may call."""
    return ModelsResponse(
        models=[
            ModelInfo(id=m.id, label=m.display_name, description=m.description, tools=list(m.tools))
            for m in MODEL_CONFIGS
        ],
        default_model=DEFAULT_MODEL_ID,
    )
