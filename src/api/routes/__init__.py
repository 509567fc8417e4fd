"""
API Router - Aggregates all endpoints.

Usage in main.py:
    from api.routes import router as api_router
    app.include_router(api_router, prefix="/api")
"""

from fastapi import APIRouter

from api.routes import chat, config, documents, health

router = APIRouter()

# Health endpoints (no auth required)
router.include_router(
    health.router,
    tags=["Health"],
)

# Streaming turns, deletion and stop
router.include_router(
    chat.router,
    tags=["Chat"],
)

# Documents and suggestions produced by tools
router.include_router(
    documents.router,
    tags=["Documents"],
)

# Model catalog
router.include_router(
    config.router,
    tags=["Configuration"],
)

__all__ = ["router"]
