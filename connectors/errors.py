"""
ConnectorError — the closed failure vocabulary shared by connectors, the
remote API client, the job layer and the HTTP routes.

Every connector operation raises one of the subclasses below; the route
layer turns them into JSON error responses and the orchestrator stores
them on the failed job.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from utils.schemas import JobError


class ConfigurationError(Exception):
    """Raised at startup when the connector configuration is unusable."""


class ConnectorError(Exception):
    """Base class for every connector-level failure."""

    kind: str = "internal"
    status_code: int = 500

    def __init__(self, message: str = "", *, context: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message()
        self.context: Dict[str, Any] = dict(context or {})
        super().__init__(self.message)

    def default_message(self) -> str:
        return self.kind.replace("_", " ").capitalize()

    def with_context(self, **context: Any) -> "ConnectorError":
        """Attach operation / path details without overwriting existing keys."""
        for key, value in context.items():
            self.context.setdefault(key, value)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"

    def to_job_error(self) -> JobError:
        return JobError(kind=self.kind, message=str(self))

    def to_dict(self) -> Dict[str, Any]:
        return {"error": True, "kind": self.kind, "message": str(self)}


class NotAuthenticated(ConnectorError):
    kind = "not_authenticated"
    status_code = 401

    def default_message(self) -> str:
        return "Not authenticated"


class NotAuthorized(ConnectorError):
    kind = "not_authorized"
    status_code = 403

    def __init__(self, resource: str = "", **kwargs: Any):
        self.resource = resource
        super().__init__(f"Not authorized: {resource}" if resource else "Not authorized", **kwargs)


class NotFound(ConnectorError):
    kind = "not_found"
    status_code = 404

    def __init__(self, resource: str = "", **kwargs: Any):
        self.resource = resource
        super().__init__(f"Resource not found: {resource}" if resource else "Resource not found", **kwargs)


class InvalidInput(ConnectorError):
    kind = "invalid_input"
    status_code = 400

    def __init__(self, reason: str = "", **kwargs: Any):
        self.reason = reason
        super().__init__(f"Invalid input: {reason}" if reason else "Invalid input", **kwargs)


class TransportFailure(ConnectorError):
    kind = "transport_failure"
    status_code = 502

    def __init__(self, cause: Any = None, **kwargs: Any):
        self.cause = cause
        super().__init__(f"Transport failure: {cause}" if cause else "Transport failure", **kwargs)


class RemoteApiFailure(ConnectorError):
    kind = "remote_api_failure"
    status_code = 502

    def __init__(self, code: int, message: str = "", **kwargs: Any):
        self.code = code
        self.remote_message = message
        super().__init__(f"Remote API error {code}: {message}" if message else f"Remote API error {code}", **kwargs)


class Internal(ConnectorError):
    kind = "internal"
    status_code = 500

    def __init__(self, reason: str = "", **kwargs: Any):
        self.reason = reason
        super().__init__(f"Internal error: {reason}" if reason else "Internal error", **kwargs)


__all__ = [
    "ConfigurationError",
    "ConnectorError",
    "NotAuthenticated",
    "NotAuthorized",
    "NotFound",
    "InvalidInput",
    "TransportFailure",
    "RemoteApiFailure",
    "Internal",
]
