"""
REST API routes.
"""

from __future__ import annotations

from typing import Dict

from fastapi import APIRouter

from api.connectors import router as connector_router
from api.publication import router as publication_router
from api.website import router as website_router

router = APIRouter()
router.include_router(connector_router, prefix="/connector")
router.include_router(website_router, prefix="/website")
router.include_router(publication_router, prefix="/publication")


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}
