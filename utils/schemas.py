"""
Pydantic schemas shared by connectors, jobs and the HTTP layer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# Website document & files
# ═══════════════════════════════════════════════════════════════════════════════


class WebsiteDocument(BaseModel):
    """
    A website as edited in the builder.

    Pages, styles and assets are opaque editor objects; only ``name`` (on
    pages), ``css`` (on styles) and ``path`` (on assets) are read by the
    default build step.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    name: str = ""
    pages: List[Dict[str, Any]] = Field(default_factory=list)
    styles: List[Dict[str, Any]] = Field(default_factory=list)
    assets: List[Dict[str, Any]] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)

    fonts: List[Dict[str, Any]] = Field(default_factory=list)
    symbols: List[Dict[str, Any]] = Field(default_factory=list)
    publication: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def empty(cls, website_id: str, name: str = "") -> "WebsiteDocument":
        return cls(id=website_id, name=name or website_id, pages=[{"name": "index"}])


class WebsiteMetaContent(BaseModel):
    """Editable website metadata, stored next to the document as ``meta.json``."""

    name: str = ""
    image_url: Optional[str] = None
    connector_user_settings: Dict[str, Any] = Field(default_factory=dict)


class WebsiteMeta(WebsiteMetaContent):
    website_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FileInfo(BaseModel):
    path: str
    name: str
    is_dir: bool = False
    size: Optional[int] = None
    last_modified: Optional[datetime] = None


class Artifact(BaseModel):
    path: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


class ArtifactSet(BaseModel):
    """Deployable files produced by the build step for one document."""

    document_id: str
    files: List[Artifact] = Field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(a.size for a in self.files)

    def add(self, path: str, content: bytes, content_type: str = "application/octet-stream") -> None:
        self.files.append(Artifact(path=path.lstrip("/"), content=content, content_type=content_type))


# ═══════════════════════════════════════════════════════════════════════════════
# Connectors, credentials & sessions
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectorType(str, Enum):
    STORAGE = "storage"
    HOSTING = "hosting"


class ConnectorKind(str, Enum):
    """Credential tag.  Connectors that share a login share a kind."""

    FS = "fs"
    GITLAB = "gitlab"


class Credential(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    token_type: str = "Bearer"
    account_label: Optional[str] = None

    def is_expired(self, skew_seconds: int = 0) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at.timestamp() <= utcnow().timestamp() + skew_seconds


class Session(BaseModel):
    session_id: str
    credentials: Dict[ConnectorKind, Credential] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ConnectorData(BaseModel):
    """Connector description sent to the front-end."""

    connector_id: str
    type: ConnectorType
    display_name: str
    icon: str = ""
    color: str = "#ffffff"
    background: str = "#000000"
    disable_logout: bool = False
    is_logged_in: bool = False
    oauth_url: Optional[str] = None


class ConnectorUser(BaseModel):
    """The account a session is logged into on one connector."""

    name: str
    email: Optional[str] = None
    picture: Optional[str] = None
    connector: ConnectorData


class OAuthState(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    session_id: str
    connector_id: str
    return_context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# Publication & jobs
# ═══════════════════════════════════════════════════════════════════════════════


class PublishResult(BaseModel):
    url: str
    files: int = 0
    commit: Optional[str] = None


class PublishState(str, Enum):
    UNKNOWN = "unknown"
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class PublishStatus(BaseModel):
    state: PublishState = PublishState.UNKNOWN
    url: Optional[str] = None
    message: str = ""


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobError(BaseModel):
    kind: str
    message: str


class Job(BaseModel):
    """Immutable snapshot of a job.  Transitions replace the whole object."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    session_id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    result: Optional[PublishResult] = None
    error: Optional[JobError] = None
    messages: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP payloads
# ═══════════════════════════════════════════════════════════════════════════════


class PublicationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    storage_id: Optional[str] = Field(None, alias="storageId")
    storage_path: str = Field(..., alias="storagePath")
    hosting_id: Optional[str] = Field(None, alias="hostingId")
    target_path: str = Field("", alias="targetPath")


class JobView(BaseModel):
    """What the status endpoint returns for a job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    status: JobStatus
    progress: int = 0
    url: Optional[str] = None
    error: Optional[JobError] = None
    messages: List[str] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: Job) -> "JobView":
        return cls(
            job_id=job.job_id,
            status=job.status,
            progress=job.progress,
            url=job.result.url if job.result else None,
            error=job.error,
            messages=list(job.messages),
        )
