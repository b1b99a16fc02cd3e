"""
Website API routes — list, read, write, duplicate and delete websites, their
metadata and assets.

Route prefix: /api/website
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from api.dependencies import get_registry, get_session_id
from connectors.registry import ConnectorRegistry
from utils.schemas import FileInfo, WebsiteDocument, WebsiteMeta, WebsiteMetaContent
from utils.validators import clean_relative_path

logger = logging.getLogger(__name__)

router = APIRouter(tags=["website"])


def _asset_location(website_path: str, asset_path: str) -> str:
    asset = clean_relative_path(asset_path)
    base = website_path.strip("/")
    return f"{base}/{asset}" if base else asset


@router.get("/", response_model=List[FileInfo])
async def list_websites(
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    path: str = Query(""),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> List[FileInfo]:
    return await registry.get_storage(connector_id).list(session_id, path)


@router.get("/document", response_model=WebsiteDocument)
async def read_document(
    path: str = Query(...),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> WebsiteDocument:
    return await registry.get_storage(connector_id).read_document(session_id, path)


@router.post("/document")
async def write_document(
    doc: WebsiteDocument,
    path: str = Query(...),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, str]:
    await registry.get_storage(connector_id).write_document(session_id, path, doc)
    return {"status": "saved", "path": path}


@router.delete("/")
async def delete_website(
    path: str = Query(...),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, str]:
    await registry.get_storage(connector_id).delete(session_id, path)
    return {"status": "deleted", "path": path}


@router.post("/duplicate")
async def duplicate_website(
    path: str = Query(...),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, str]:
    new_path = await registry.get_storage(connector_id).duplicate(session_id, path)
    return {"status": "duplicated", "path": new_path}


@router.get("/meta", response_model=WebsiteMeta)
async def read_meta(
    path: str = Query(...),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> WebsiteMeta:
    return await registry.get_storage(connector_id).get_meta(session_id, path)


@router.post("/meta")
async def write_meta(
    meta: WebsiteMetaContent,
    path: str = Query(...),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, str]:
    await registry.get_storage(connector_id).set_meta(session_id, path, meta)
    return {"status": "saved", "path": path}


@router.get("/assets/{asset_path:path}")
async def read_asset(
    asset_path: str,
    path: str = Query("", description="website path the asset belongs to"),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Response:
    content = await registry.get_storage(connector_id).read_asset(session_id, _asset_location(path, asset_path))
    media_type = mimetypes.guess_type(asset_path)[0] or "application/octet-stream"
    return Response(content=content, media_type=media_type)


@router.put("/assets/{asset_path:path}")
async def write_asset(
    asset_path: str,
    request: Request,
    path: str = Query(""),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, str]:
    """Store the raw request body as an asset of the website at ``path``."""
    location = _asset_location(path, asset_path)
    content = await request.body()
    await registry.get_storage(connector_id).write_asset(session_id, location, content)
    logger.debug("Stored asset %s (%d bytes)", location, len(content))
    return {"status": "saved", "path": clean_relative_path(asset_path)}
