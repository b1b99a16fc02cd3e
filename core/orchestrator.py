"""
Orchestrator — runs one publication as a background job.

    read document → build artifacts → fetch assets → hosting.publish

Progress reported by the hosting connector is forwarded to the job.  The
job ends ``completed`` with the published URL or ``failed`` with the first
error; there are no retries at this level.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from typing import Optional, Set

from connectors.base import HostingConnector, StorageConnector
from connectors.errors import ConnectorError, Internal
from core.build import BuildStep, asset_paths, build_artifacts
from core.hooks import PUBLISH_COMPLETED, PUBLISH_FAILED, PUBLISH_STARTED, HookRegistry
from core.jobs import JobHandle, JobManager, JobStateError
from utils.schemas import ArtifactSet, WebsiteDocument

logger = logging.getLogger(__name__)


class PublicationOrchestrator:
    def __init__(
        self,
        jobs: JobManager,
        *,
        build: BuildStep = build_artifacts,
        hooks: Optional[HookRegistry] = None,
    ):
        """
        Parameters
        ----------
        jobs  : job registry the publication reports into.
        build : document → ArtifactSet; defaults to the static HTML build.
        hooks : optional lifecycle hooks (``publish.started`` / ``.completed``
                / ``.failed``).
        """
        self.jobs = jobs
        self.build = build
        self.hooks = hooks or HookRegistry()
        self._tasks: Set[asyncio.Task] = set()

    # ── public entry points ─────────────────────────────────────────────

    def spawn(
        self,
        session_id: str,
        storage: StorageConnector,
        storage_path: str,
        hosting: HostingConnector,
        target_path: str,
    ) -> str:
        """Create a pending job, schedule the run and return the job id."""
        handle = self.jobs.create(session_id)
        task = asyncio.create_task(
            self.run(handle, session_id, storage, storage_path, hosting, target_path),
            name=f"publish-{handle.job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle.job_id

    async def run(
        self,
        handle: JobHandle,
        session_id: str,
        storage: StorageConnector,
        storage_path: str,
        hosting: HostingConnector,
        target_path: str,
    ) -> None:
        handle.start()
        await self.hooks.emit(PUBLISH_STARTED, job_id=handle.job_id, storage_path=storage_path, target_path=target_path)

        async def on_progress(percent: int) -> None:
            handle.progress(percent)

        try:
            doc = await storage.read_document(session_id, storage_path)
            handle.log(f"Loaded website {doc.id or storage_path} ({len(doc.pages)} pages)")
            artifacts = self.build(doc)
            await self._add_assets(session_id, storage, storage_path, doc, artifacts)
            handle.log(f"Publishing {len(artifacts.files)} files to {hosting.display_name}")
            result = await hosting.publish(session_id, artifacts, target_path, handle.job_id, on_progress)
        except ConnectorError as exc:
            logger.warning("Publication %s failed: %s", handle.job_id, exc)
            await self._fail(handle, exc)
            return
        except JobStateError:
            raise
        except Exception as exc:
            logger.exception("Publication %s crashed", handle.job_id)
            await self._fail(handle, Internal(f"{exc.__class__.__name__}: {exc}"))
            return

        job = handle.complete(result)
        logger.info("Publication %s completed → %s", handle.job_id, result.url)
        await self.hooks.emit(PUBLISH_COMPLETED, job=job)

    # ── helpers ─────────────────────────────────────────────────────────

    async def _add_assets(
        self,
        session_id: str,
        storage: StorageConnector,
        storage_path: str,
        doc: WebsiteDocument,
        artifacts: ArtifactSet,
    ) -> None:
        base = storage_path.strip("/")
        for path in asset_paths(doc):
            content = await storage.read_asset(session_id, f"{base}/{path}" if base else path)
            content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
            artifacts.add(path, content, content_type)

    async def _fail(self, handle: JobHandle, error: ConnectorError) -> None:
        job = handle.fail(error)
        await self.hooks.emit(PUBLISH_FAILED, job=job, error=error)

    async def shutdown(self) -> None:
        """Wait for running publications (used on application shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
