"""
Publication API routes — start a publication job and poll it.

Route prefix: /api/publication
"""

from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, Depends, status

from api.dependencies import get_jobs, get_orchestrator, get_registry, get_session_id
from connectors.errors import NotFound
from connectors.registry import ConnectorRegistry
from core.jobs import JobManager
from core.orchestrator import PublicationOrchestrator
from utils.schemas import JobView, PublicationRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["publication"])


@router.post("/", status_code=status.HTTP_202_ACCEPTED)
async def start_publication(
    body: PublicationRequest,
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
    orchestrator: PublicationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, str]:
    """
    Accept a publication and run it in the background.

    Unknown connectors are rejected here; every later failure is reported
    through the job status.
    """
    storage = registry.get_storage(body.storage_id)
    hosting = registry.get_hosting(body.hosting_id)
    job_id = orchestrator.spawn(session_id, storage, body.storage_path, hosting, body.target_path)
    logger.info(
        "Publication %s accepted: %s:%s → %s:%s",
        job_id, storage.connector_id, body.storage_path, hosting.connector_id, body.target_path,
    )
    return {"jobId": job_id}


@router.get("/{job_id}", response_model=JobView)
async def publication_status(
    job_id: str,
    session_id: str = Depends(get_session_id),
    jobs: JobManager = Depends(get_jobs),
) -> JobView:
    job = jobs.get_for_session(job_id, session_id)
    if job is None:
        raise NotFound(f"job '{job_id}'")
    return JobView.from_job(job)
