"""
FsHosting — publishes built sites into a local directory.

Each publication is written to a hidden staging directory next to the
destination and swapped in with ``os.replace`` once every file is on disk,
so a reader of ``{hosting_path}/{target}`` never sees a half-written site.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Optional

from connectors.base import HostingConnector, NoAuthMixin, ProgressCallback
from connectors.errors import Internal, InvalidInput
from utils.schemas import (
    ArtifactSet,
    ConnectorKind,
    PublishResult,
    PublishState,
    PublishStatus,
)

logger = logging.getLogger(__name__)


class FsHosting(NoAuthMixin, HostingConnector):
    def __init__(self, hosting_path: str | Path, base_url: Optional[str] = None) -> None:
        self.root = Path(hosting_path).resolve()
        self.base_url = base_url.rstrip("/") if base_url else None
        self._results: Dict[str, PublishStatus] = {}

    @property
    def connector_id(self) -> str:
        return "fs-hosting"

    @property
    def kind(self) -> ConnectorKind:
        return ConnectorKind.FS

    @property
    def display_name(self) -> str:
        return "File system hosting"

    @property
    def icon(self) -> str:
        return "/assets/laptop.png"

    @property
    def background(self) -> str:
        return "#006400"

    async def init(self) -> None:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)

    def target_dir(self, target_path: str, fallback: str) -> Path:
        name = target_path.strip("/") or fallback
        target = (self.root / name).resolve()
        if self.root not in target.parents:
            raise InvalidInput(f"target path escapes hosting root: {target_path}")
        return target

    def url_for(self, target: Path) -> str:
        relative = target.relative_to(self.root).as_posix()
        if self.base_url:
            return f"{self.base_url}/{relative}/"
        return (target / "index.html").as_uri()

    # ── Publication ─────────────────────────────────────────────────────

    async def publish(
        self,
        session_id: str,
        artifacts: ArtifactSet,
        target_path: str,
        job_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PublishResult:
        target = self.target_dir(target_path, artifacts.document_id or job_id)
        staging = target.parent / f".staging-{job_id}"
        self._results[job_id] = PublishStatus(state=PublishState.RUNNING)
        logger.info("Publishing %d files to %s", len(artifacts.files), target)

        try:
            await asyncio.to_thread(self._reset_dir, staging)
            total = len(artifacts.files)
            for index, artifact in enumerate(artifacts.files, start=1):
                path = (staging / artifact.path).resolve()
                if staging not in path.parents:
                    raise InvalidInput(f"artifact path escapes target: {artifact.path}")
                await asyncio.to_thread(self._write_file, path, artifact.content)
                if on_progress:
                    await on_progress(int(index * 100 / total))
            await asyncio.to_thread(self._swap, staging, target)
        except InvalidInput:
            self._results[job_id] = PublishStatus(state=PublishState.FAILED, message="invalid artifact path")
            await asyncio.to_thread(shutil.rmtree, staging, True)
            raise
        except OSError as exc:
            self._results[job_id] = PublishStatus(state=PublishState.FAILED, message=str(exc))
            await asyncio.to_thread(shutil.rmtree, staging, True)
            raise Internal(f"could not write site: {exc}", context={"target": str(target)}) from exc

        url = self.url_for(target)
        self._results[job_id] = PublishStatus(state=PublishState.SUCCESS, url=url)
        logger.info("Published %s → %s", artifacts.document_id, url)
        return PublishResult(url=url, files=len(artifacts.files))

    async def status(self, session_id: str, job_id: str) -> PublishStatus:
        return self._results.get(job_id, PublishStatus())

    # ── Blocking helpers (run in a worker thread) ───────────────────────

    @staticmethod
    def _reset_dir(path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)

    @staticmethod
    def _write_file(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    @staticmethod
    def _swap(staging: Path, target: Path) -> None:
        previous = target.parent / f".previous-{target.name}"
        if previous.exists():
            shutil.rmtree(previous)
        if target.exists():
            os.replace(target, previous)
        os.replace(staging, target)
        if previous.exists():
            shutil.rmtree(previous)
