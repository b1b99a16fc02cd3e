"""
Application settings loaded from environment variables.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # ── Server ───────────────────────────────────────────────────────────
    port: int = 6805
    host: str = "0.0.0.0"
    debug: bool = False
    cors_origins: list = ["*"]
    public_url: str = "http://localhost:6805"   # base URL for OAuth callbacks

    # ── Sessions ─────────────────────────────────────────────────────────
    session_secret: str = "change-me-session-secret"   # HMAC secret for session cookies
    session_cookie_name: str = "sitebridge_session"
    session_expiry_seconds: int = 604800                # 7 days
    session_store_url: str = ""                          # empty → in-memory store
    token_encryption_key: str = ""                       # Fernet key for credentials at rest

    # ── Connectors ───────────────────────────────────────────────────────
    storage_connectors: List[str] = ["fs-storage"]
    hosting_connectors: List[str] = ["fs-hosting"]

    # ── Filesystem connectors ────────────────────────────────────────────
    data_path: str = "./sitebridge/storage"
    hosting_path: str = "./sitebridge/hosting"
    hosting_base_url: Optional[str] = None       # None → file:// URLs
    default_website_id: str = "default"

    # ── GitLab connectors ────────────────────────────────────────────────
    gitlab_url: str = "https://gitlab.com"
    gitlab_client_id: str = ""
    gitlab_client_secret: str = ""
    gitlab_scopes: List[str] = ["api", "read_user"]
    gitlab_branch: str = "main"
    gitlab_pages_branch: str = "main"
    gitlab_pages_url_template: str = "https://{namespace}.gitlab.io/{project}/{target}"
    gitlab_upload_sessions_path: str = ""          # chunked upload endpoint (provider-specific); empty → off

    # ── OAuth ────────────────────────────────────────────────────────────
    oauth_state_ttl_seconds: int = 600

    # ── Remote API client ────────────────────────────────────────────────
    remote_timeout_seconds: float = 30.0
    remote_max_retries: int = 5
    remote_backoff_base: float = 1.0
    remote_backoff_max: float = 60.0
    remote_transport_retry_delay: float = 0.5
    remote_page_size: int = 100
    chunk_threshold_bytes: int = 5 * 1024 * 1024
    chunk_size_bytes: int = 1024 * 1024

    # ── Jobs ─────────────────────────────────────────────────────────────
    job_retention_seconds: int = 0          # 0 → keep finished jobs forever
    job_reaper_interval_seconds: int = 60
    jobs_session_scoped: bool = True        # only the creating session may poll

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    def get_retry_policy(self) -> dict:
        """Return the keyword arguments for ``RetryPolicy`` built from settings."""
        return {
            "max_retries": self.remote_max_retries,
            "backoff_base": self.remote_backoff_base,
            "backoff_max": self.remote_backoff_max,
            "transport_retry_delay": self.remote_transport_retry_delay,
        }


config = Settings()
