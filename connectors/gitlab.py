"""
GitLab connectors — website storage in a repository, publication to Pages.

Both connectors read the same ``ConnectorKind.GITLAB`` credential, so a
single login covers storage and hosting.

Paths look like ``<project id>/<directory>``; the empty path lists the
projects the user is a member of.

Large files go through a chunked upload session only when
``upload_sessions_path`` is set; GitLab's v4 API has no such endpoint, so
by default every file travels base64-encoded inside a commit.  When a
publication fails after some chunked files were already stored, one
compensating commit deletes them or restores their previous content.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import quote

import httpx

from connectors.base import BaseConnector, HostingConnector, ProgressCallback, StorageConnector
from connectors.errors import ConnectorError, InvalidInput, NotFound, RemoteApiFailure
from connectors.oauth import OAuthFlowManager, OAuthProvider
from connectors.remote_client import RemoteApiClient, RetryPolicy, error_from_response
from connectors.token_manager import CredentialManager
from utils.schemas import (
    ArtifactSet,
    ConnectorKind,
    ConnectorUser,
    FileInfo,
    PublishResult,
    PublishState,
    PublishStatus,
    WebsiteDocument,
    WebsiteMeta,
    WebsiteMetaContent,
)

logger = logging.getLogger(__name__)

WEBSITE_DATA_FILE = "website.json"
META_FILE = "meta.json"
PAGES_ROOT = "public"

_PIPELINE_STATES = {
    "created": PublishState.PENDING,
    "waiting_for_resource": PublishState.PENDING,
    "preparing": PublishState.PENDING,
    "pending": PublishState.PENDING,
    "scheduled": PublishState.PENDING,
    "manual": PublishState.PENDING,
    "running": PublishState.RUNNING,
    "success": PublishState.SUCCESS,
    "failed": PublishState.FAILED,
    "canceled": PublishState.FAILED,
    "skipped": PublishState.FAILED,
}


def gitlab_oauth_provider(settings) -> OAuthProvider:
    """Build the GitLab OAuth application from settings."""
    base = settings.gitlab_url.rstrip("/")
    return OAuthProvider(
        name="gitlab",
        authorize_url=f"{base}/oauth/authorize",
        token_url=f"{base}/oauth/token",
        client_id=settings.gitlab_client_id,
        client_secret=settings.gitlab_client_secret,
        redirect_uri=f"{settings.public_url.rstrip('/')}/api/connector/login/callback",
        scopes=list(settings.gitlab_scopes),
    )


@dataclass
class GitLabOptions:
    api_url: str = "https://gitlab.com/api/v4"
    branch: str = "main"
    pages_branch: str = "main"
    pages_url_template: str = "https://{namespace}.gitlab.io/{project}/{target}"
    upload_sessions_path: str = ""
    timeout: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    page_size: int = 100
    chunk_threshold: int = 5 * 1024 * 1024
    chunk_size: int = 1024 * 1024

    @classmethod
    def from_settings(cls, settings) -> "GitLabOptions":
        return cls(
            api_url=f"{settings.gitlab_url.rstrip('/')}/api/v4",
            branch=settings.gitlab_branch,
            pages_branch=settings.gitlab_pages_branch,
            pages_url_template=settings.gitlab_pages_url_template,
            upload_sessions_path=settings.gitlab_upload_sessions_path,
            timeout=settings.remote_timeout_seconds,
            retry=RetryPolicy(**settings.get_retry_policy()),
            page_size=settings.remote_page_size,
            chunk_threshold=settings.chunk_threshold_bytes,
            chunk_size=settings.chunk_size_bytes,
        )


def split_path(path: str) -> Tuple[str, str]:
    """``"42/site/assets"`` → ``("42", "site/assets")``."""
    parts = path.strip("/").split("/", 1)
    project = parts[0]
    if not project:
        raise InvalidInput("path must start with a project id")
    return project, parts[1] if len(parts) > 1 else ""


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def _file_url(project: str, file_path: str) -> str:
    return f"/projects/{quote(project, safe='')}/repository/files/{quote(file_path, safe='')}"


class _GitLabBase(BaseConnector):
    """Authentication and API plumbing shared by both GitLab connectors."""

    def __init__(
        self,
        credentials: CredentialManager,
        oauth: OAuthFlowManager,
        options: Optional[GitLabOptions] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.credentials = credentials
        self.oauth = oauth
        self.options = options or GitLabOptions()
        self._transport = transport

    @property
    def kind(self) -> ConnectorKind:
        return ConnectorKind.GITLAB

    @property
    def icon(self) -> str:
        return "/assets/gitlab.png"

    @property
    def color(self) -> str:
        return "#ffffff"

    @property
    def background(self) -> str:
        return "#fc6d26"

    async def is_authenticated(self, session_id: str) -> bool:
        return await self.credentials.get(session_id, self.kind) is not None

    async def auth_url(
        self,
        session_id: str,
        return_context: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        return self.oauth.start(session_id, self.connector_id, return_context)

    async def complete_oauth(self, session_id: str, code: str, state: str) -> Dict[str, Any]:
        return await self.oauth.complete(session_id, code, state)

    async def logout(self, session_id: str) -> None:
        await self.credentials.clear(session_id, self.kind)

    async def get_user(self, session_id: str) -> ConnectorUser:
        async with self.api(session_id) as api:
            user = await api.get_json("/user", resource="user")
        return ConnectorUser(
            name=user.get("name") or user.get("username", ""),
            email=user.get("public_email") or user.get("email") or None,
            picture=user.get("avatar_url"),
            connector=await self.describe(session_id),
        )

    def api(self, session_id: str) -> RemoteApiClient:
        return RemoteApiClient(
            self.options.api_url,
            token_source=self.credentials.token_source(session_id, self.kind, self.oauth.refresh),
            timeout=self.options.timeout,
            retry=self.options.retry,
            page_size=self.options.page_size,
            chunk_size=self.options.chunk_size,
            transport=self._transport,
        )

    # ── Repository helpers ──────────────────────────────────────────────

    async def _file_exists(self, api: RemoteApiClient, project: str, file_path: str, ref: str) -> bool:
        response = await api.request(
            "HEAD", _file_url(project, file_path), params={"ref": ref}, check=False
        )
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise error_from_response(response, file_path)
        return True

    async def _tree(self, api: RemoteApiClient, project: str, path: str, ref: str, recursive: bool = False) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"ref": ref}
        if path:
            params["path"] = path
        if recursive:
            params["recursive"] = "true"
        return await api.paginate(
            f"/projects/{quote(project, safe='')}/repository/tree",
            params,
            resource=_join(project, path) or project,
        ).collect()

    async def _read_raw(self, api: RemoteApiClient, project: str, file_path: str, ref: str, resource: str = "") -> bytes:
        response = await api.request(
            "GET",
            f"{_file_url(project, file_path)}/raw",
            params={"ref": ref},
            resource=resource or file_path,
        )
        return response.content

    async def _read_json(self, api: RemoteApiClient, project: str, file_path: str, ref: str, resource: str = "") -> Dict[str, Any]:
        content = await self._read_raw(api, project, file_path, ref, resource)
        try:
            return json.loads(content)
        except ValueError as exc:
            raise RemoteApiFailure(200, f"{file_path} is not valid JSON") from exc

    async def _blobs(self, api: RemoteApiClient, project: str, path: str, ref: str) -> List[str]:
        """File paths under ``path``; a path GitLab has no tree for yields none."""
        try:
            entries = await self._tree(api, project, path, ref, recursive=True)
        except NotFound:
            return []
        return [entry["path"] for entry in entries if entry.get("type") == "blob"]

    async def _commit(
        self,
        api: RemoteApiClient,
        project: str,
        branch: str,
        message: str,
        actions: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        return await api.post_json(
            f"/projects/{quote(project, safe='')}/repository/commits",
            {"branch": branch, "commit_message": message, "actions": actions},
            idempotent=False,
            resource=project,
        )

    def _upload_sessions_path(self, project: str) -> str:
        return self.options.upload_sessions_path.format(project_id=quote(project, safe=""))

    def _needs_chunking(self, size: int) -> bool:
        """Chunk only when an upload-session endpoint is configured."""
        return bool(self.options.upload_sessions_path) and size > self.options.chunk_threshold


class GitLabStorage(_GitLabBase, StorageConnector):
    """Stores each website as ``website.json`` plus assets in a repository."""

    @property
    def connector_id(self) -> str:
        return "gitlab-storage"

    @property
    def display_name(self) -> str:
        return "GitLab storage"

    async def list(self, session_id: str, path: str) -> List[FileInfo]:
        async with self.api(session_id) as api:
            if not path.strip("/"):
                projects = await api.paginate(
                    "/projects", {"membership": "true", "order_by": "last_activity_at"}, resource="projects"
                ).collect()
                return [
                    FileInfo(path=str(p["id"]), name=p.get("name") or p.get("path", ""), is_dir=True)
                    for p in projects
                ]
            project, directory = split_path(path)
            entries = await self._tree(api, project, directory, self.options.branch)
        return [
            FileInfo(
                path=_join(project, entry["path"]),
                name=entry["name"],
                is_dir=entry.get("type") == "tree",
            )
            for entry in entries
        ]

    async def read_document(self, session_id: str, path: str) -> WebsiteDocument:
        project, directory = split_path(path)
        file_path = _join(directory, WEBSITE_DATA_FILE)
        async with self.api(session_id) as api:
            raw = await self._read_json(api, project, file_path, self.options.branch, f"website '{path}'")
        raw.setdefault("id", path.strip("/"))
        return WebsiteDocument.model_validate(raw)

    async def write_document(self, session_id: str, path: str, doc: WebsiteDocument) -> None:
        project, directory = split_path(path)
        file_path = _join(directory, WEBSITE_DATA_FILE)
        content = json.dumps(doc.model_dump(mode="json"), indent=2, sort_keys=True, ensure_ascii=False)
        async with self.api(session_id) as api:
            exists = await self._file_exists(api, project, file_path, self.options.branch)
            await self._commit(
                api,
                project,
                self.options.branch,
                f"Update website {doc.name or doc.id}",
                [{"action": "update" if exists else "create", "file_path": file_path, "content": content}],
            )
        logger.info("Saved website %s to GitLab project %s", file_path, project)

    async def delete(self, session_id: str, path: str) -> None:
        project, target = split_path(path)
        async with self.api(session_id) as api:
            if not target:
                await api.request("DELETE", f"/projects/{quote(project, safe='')}", resource=f"project {project}")
                logger.info("Deleted GitLab project %s", project)
                return
            blobs = await self._blobs(api, project, target, self.options.branch)
            if not blobs:
                if not await self._file_exists(api, project, target, self.options.branch):
                    raise NotFound(path)
                blobs = [target]
            await self._commit(
                api,
                project,
                self.options.branch,
                f"Delete {target}",
                [{"action": "delete", "file_path": p} for p in blobs],
            )
        logger.info("Deleted %d file(s) under %s", len(blobs), path)

    async def read_asset(self, session_id: str, path: str) -> bytes:
        project, file_path = split_path(path)
        if not file_path:
            raise InvalidInput("asset path is empty")
        async with self.api(session_id) as api:
            return await self._read_raw(api, project, file_path, self.options.branch, f"asset '{path}'")

    async def write_asset(self, session_id: str, path: str, content: bytes) -> None:
        project, file_path = split_path(path)
        if not file_path:
            raise InvalidInput("asset path is empty")
        async with self.api(session_id) as api:
            if self._needs_chunking(len(content)):
                await api.upload_chunked(
                    self._upload_sessions_path(project),
                    content,
                    filename=file_path,
                    metadata={"branch": self.options.branch, "file_path": file_path},
                )
                return
            exists = await self._file_exists(api, project, file_path, self.options.branch)
            await self._commit(
                api,
                project,
                self.options.branch,
                f"Upload {file_path}",
                [
                    {
                        "action": "update" if exists else "create",
                        "file_path": file_path,
                        "content": base64.b64encode(content).decode("ascii"),
                        "encoding": "base64",
                    }
                ],
            )

    # ── Website management ──────────────────────────────────────────────

    async def get_meta(self, session_id: str, path: str) -> WebsiteMeta:
        project, directory = split_path(path)
        async with self.api(session_id) as api:
            content = await self._meta_content(api, project, directory, path)
        # The repository API carries no per-directory timestamps
        return WebsiteMeta(website_id=_join(project, directory), **content.model_dump())

    async def _meta_content(self, api: RemoteApiClient, project: str, directory: str, path: str) -> WebsiteMetaContent:
        try:
            raw = await self._read_json(api, project, _join(directory, META_FILE), self.options.branch)
        except NotFound:
            raw = {}
        if not raw.get("name"):
            doc = await self._read_json(
                api, project, _join(directory, WEBSITE_DATA_FILE), self.options.branch, f"website '{path}'"
            )
            raw["name"] = doc.get("name") or directory.rsplit("/", 1)[-1] or project
        return WebsiteMetaContent.model_validate(raw)

    async def set_meta(self, session_id: str, path: str, meta: WebsiteMetaContent) -> None:
        project, directory = split_path(path)
        file_path = _join(directory, META_FILE)
        content = json.dumps(meta.model_dump(mode="json"), indent=2, sort_keys=True, ensure_ascii=False)
        async with self.api(session_id) as api:
            if not await self._file_exists(api, project, _join(directory, WEBSITE_DATA_FILE), self.options.branch):
                raise NotFound(f"website '{path}'")
            exists = await self._file_exists(api, project, file_path, self.options.branch)
            await self._commit(
                api,
                project,
                self.options.branch,
                f"Update metadata of {meta.name or directory or project}",
                [{"action": "update" if exists else "create", "file_path": file_path, "content": content}],
            )

    async def duplicate(self, session_id: str, path: str) -> str:
        project, directory = split_path(path)
        if not directory:
            raise InvalidInput("cannot duplicate a whole project")
        parent = directory.rsplit("/", 1)[0] if "/" in directory else ""
        new_directory = _join(parent, uuid.uuid4().hex)
        new_path = _join(project, new_directory)

        async with self.api(session_id) as api:
            blobs = await self._blobs(api, project, directory, self.options.branch)
            if not blobs:
                raise NotFound(f"website '{path}'")
            meta = await self._meta_content(api, project, directory, path)
            actions = []
            for blob in blobs:
                relative = blob[len(directory) + 1:]
                if relative == META_FILE:
                    continue
                content = await self._read_raw(api, project, blob, self.options.branch)
                if relative == WEBSITE_DATA_FILE:
                    data = json.loads(content)
                    data["id"] = new_path
                    content = json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8")
                actions.append(
                    {
                        "action": "create",
                        "file_path": _join(new_directory, relative),
                        "content": base64.b64encode(content).decode("ascii"),
                        "encoding": "base64",
                    }
                )
            copy = meta.model_copy(update={"name": f"{meta.name} copy"})
            actions.append(
                {
                    "action": "create",
                    "file_path": _join(new_directory, META_FILE),
                    "content": json.dumps(copy.model_dump(mode="json"), indent=2, sort_keys=True, ensure_ascii=False),
                }
            )
            await self._commit(api, project, self.options.branch, f"Duplicate {directory}", actions)

        logger.info("Duplicated website %s to %s (%d file(s))", path, new_path, len(actions))
        return new_path


class GitLabHosting(_GitLabBase, HostingConnector):
    """Publishes built sites to the ``public/`` folder served by GitLab Pages."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # job id → (project, commit sha) for status lookups
        self._commits: Dict[str, Tuple[str, str]] = {}

    @property
    def connector_id(self) -> str:
        return "gitlab-hosting"

    @property
    def display_name(self) -> str:
        return "GitLab Pages"

    async def publish(
        self,
        session_id: str,
        artifacts: ArtifactSet,
        target_path: str,
        job_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PublishResult:
        project, target = split_path(target_path)
        prefix = _join(PAGES_ROOT, target)
        branch = self.options.pages_branch
        large = [a for a in artifacts.files if self._needs_chunking(a.size)]
        small = [a for a in artifacts.files if not self._needs_chunking(a.size)]
        # Chunked files take 90% of the bar, the final commit the rest
        total_bytes = sum(a.size for a in large) or 1
        sent_bytes = 0

        async with self.api(session_id) as api:
            info = await api.get_json(f"/projects/{quote(project, safe='')}", resource=f"project {project}")
            existing: Set[str] = set(await self._blobs(api, project, prefix, branch))
            # (file path, content before this publication or None) per finished upload
            uploaded: List[Tuple[str, Optional[bytes]]] = []
            commit: Dict[str, Any] = {}

            try:
                for artifact in large:
                    file_path = _join(prefix, artifact.path)
                    previous = await self._read_raw(api, project, file_path, branch) if file_path in existing else None
                    done_before = sent_bytes

                    async def report(sent: int, total: int, _size: int = artifact.size, _base: int = done_before) -> None:
                        if on_progress:
                            await on_progress(int((_base + _size * sent / total) * 90 / total_bytes))

                    await api.upload_chunked(
                        self._upload_sessions_path(project),
                        artifact.content,
                        filename=file_path,
                        metadata={"branch": branch, "file_path": file_path},
                        on_chunk=report,
                    )
                    uploaded.append((file_path, previous))
                    sent_bytes += artifact.size

                actions = [
                    {
                        "action": "update" if _join(prefix, a.path) in existing else "create",
                        "file_path": _join(prefix, a.path),
                        "content": base64.b64encode(a.content).decode("ascii"),
                        "encoding": "base64",
                    }
                    for a in small
                ]
                if actions:
                    commit = await self._commit(
                        api, project, branch, f"Publish {artifacts.document_id or target or 'website'}", actions
                    ) or {}
            except ConnectorError:
                if uploaded:
                    await self._roll_back(api, project, branch, uploaded)
                raise

        sha = commit.get("id")
        if sha:
            self._commits[job_id] = (project, sha)
        if on_progress:
            await on_progress(100)

        url = self.pages_url(info, target)
        logger.info("Published %d file(s) to GitLab project %s (%s)", len(artifacts.files), project, sha or "no commit")
        return PublishResult(url=url, files=len(artifacts.files), commit=sha)

    async def _roll_back(
        self,
        api: RemoteApiClient,
        project: str,
        branch: str,
        uploaded: List[Tuple[str, Optional[bytes]]],
    ) -> None:
        """Undo finished chunked uploads of a failed publication in one commit."""
        actions = []
        for file_path, previous in uploaded:
            if previous is None:
                actions.append({"action": "delete", "file_path": file_path})
            else:
                actions.append(
                    {
                        "action": "update",
                        "file_path": file_path,
                        "content": base64.b64encode(previous).decode("ascii"),
                        "encoding": "base64",
                    }
                )
        try:
            await self._commit(api, project, branch, "Roll back failed publication", actions)
        except ConnectorError as exc:
            logger.error(
                "Could not roll back %d uploaded file(s) in project %s: %s", len(actions), project, exc
            )
            return
        logger.warning("Rolled back %d uploaded file(s) in project %s", len(actions), project)

    def pages_url(self, project_info: Dict[str, Any], target: str) -> str:
        namespace = (project_info.get("namespace") or {}).get("path", "")
        return self.options.pages_url_template.format(
            namespace=namespace,
            project=project_info.get("path", ""),
            target=target,
        )

    async def status(self, session_id: str, job_id: str) -> PublishStatus:
        published = self._commits.get(job_id)
        if published is None:
            return PublishStatus()
        project, sha = published
        async with self.api(session_id) as api:
            pipelines = await api.get_json(
                f"/projects/{quote(project, safe='')}/pipelines",
                params={"sha": sha, "per_page": 1},
                resource=f"project {project}",
            )
        if not pipelines:
            return PublishStatus(state=PublishState.PENDING, message="no pipeline yet")
        pipeline = pipelines[0]
        state = _PIPELINE_STATES.get(pipeline.get("status", ""), PublishState.UNKNOWN)
        return PublishStatus(state=state, url=pipeline.get("web_url"), message=pipeline.get("status", ""))
