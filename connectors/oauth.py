"""
OAuth2 authorization-code flow: state tokens, code exchange, refresh.

A login attempt moves through ``Started -> AwaitingCallback -> Completed``
(or fails as expired / invalid):

  1. ``start()`` issues a single-use state token, remembers it for
     ``ttl_seconds`` and returns the provider authorization URL.
  2. ``complete()`` consumes the state (exactly once), exchanges the code
     for tokens and stores the credential in the caller's session.
  3. ``refresh()`` trades a refresh token for a new credential; it is
     called lazily by ``SessionTokenSource`` when the API answers 401.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from connectors.errors import NotAuthenticated, RemoteApiFailure
from connectors.remote_client import RemoteApiClient, RetryPolicy, remote_message
from connectors.token_manager import CredentialManager
from utils.schemas import ConnectorKind, Credential, OAuthState, utcnow

logger = logging.getLogger(__name__)

STATE_BYTES = 32  # 256 bits of entropy, URL-safe base64


@dataclass
class OAuthProvider:
    """Static OAuth2 endpoints and client registration for one provider."""

    name: str
    authorize_url: str
    token_url: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: List[str] = field(default_factory=list)

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class OAuthStateStore:
    """
    In-memory, TTL-bounded map of pending state tokens.

    ``consume`` pops under a lock, so two concurrent callbacks presenting
    the same state cannot both succeed.
    """

    def __init__(self, ttl_seconds: int = 600) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._states: Dict[str, OAuthState] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._states)

    def put(self, state: OAuthState) -> None:
        with self._lock:
            self._purge_expired_locked()
            self._states[state.token] = state

    def peek(self, token: str) -> Optional[OAuthState]:
        """Return the pending state without consuming it."""
        with self._lock:
            return self._states.get(token)

    def consume(self, token: str) -> Optional[OAuthState]:
        """Remove and return the state if it exists and has not expired."""
        with self._lock:
            state = self._states.pop(token, None)
        if state is None:
            return None
        if self._expired(state):
            logger.info("OAuth state expired (issued %s)", state.created_at.isoformat())
            return None
        return state

    def _expired(self, state: OAuthState) -> bool:
        return utcnow() - state.created_at >= self.ttl

    def _purge_expired_locked(self) -> None:
        stale = [token for token, state in self._states.items() if self._expired(state)]
        for token in stale:
            del self._states[token]
        if stale:
            logger.debug("Purged %d expired OAuth state(s)", len(stale))


class OAuthFlowManager:
    """Runs the authorization-code flow for one provider / credential kind."""

    def __init__(
        self,
        provider: OAuthProvider,
        kind: ConnectorKind,
        credentials: CredentialManager,
        state_store: OAuthStateStore,
        *,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.provider = provider
        self.kind = kind
        self.credentials = credentials
        self.states = state_store
        self._timeout = timeout
        self._retry = retry
        self._transport = transport

    # ── Step 1: authorization URL ───────────────────────────────────────

    def start(
        self,
        session_id: str,
        connector_id: str,
        return_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        state = OAuthState(
            token=secrets.token_urlsafe(STATE_BYTES),
            session_id=session_id,
            connector_id=connector_id,
            return_context=dict(return_context or {}),
        )
        self.states.put(state)
        params = {
            "client_id": self.provider.client_id,
            "redirect_uri": self.provider.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.provider.scopes),
            "state": state.token,
        }
        return f"{self.provider.authorize_url}?{urlencode(params)}"

    # ── Step 2: callback ────────────────────────────────────────────────

    async def complete(self, session_id: str, code: str, state: str) -> Dict[str, Any]:
        """
        Validate ``state``, exchange ``code`` and store the credential.

        Returns the ``return_context`` recorded by :meth:`start`.

        Raises
        ------
        NotAuthenticated  – unknown, expired, reused or foreign state
        RemoteApiFailure  – the provider rejected the code
        """
        pending = self.states.consume(state)
        if pending is None:
            raise NotAuthenticated("Invalid or expired OAuth state", context={"provider": self.provider.name})
        if pending.session_id != session_id:
            logger.warning("OAuth state presented by a different session — rejecting")
            raise NotAuthenticated("OAuth state does not belong to this session", context={"provider": self.provider.name})

        credential = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.provider.redirect_uri,
            },
            rejection=RemoteApiFailure,
        )
        await self.credentials.store_credential(session_id, self.kind, credential)
        logger.info("OAuth completed for %s (session %s)", self.provider.name, session_id[:8])
        return dict(pending.return_context)

    # ── Refresh ─────────────────────────────────────────────────────────

    async def refresh(self, credential: Credential) -> Credential:
        """Exchange ``credential.refresh_token`` for a fresh credential."""
        if not credential.refresh_token:
            raise NotAuthenticated("No refresh token", context={"provider": self.provider.name})
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
                "redirect_uri": self.provider.redirect_uri,
            },
            rejection=NotAuthenticated,
        )

    async def _token_request(self, form: Dict[str, str], *, rejection: type) -> Credential:
        form = {
            "client_id": self.provider.client_id,
            "client_secret": self.provider.client_secret,
            **form,
        }
        async with RemoteApiClient(
            "",
            timeout=self._timeout,
            retry=self._retry,
            transport=self._transport,
        ) as api:
            response = await api.request("POST", self.provider.token_url, data=form, idempotent=False, check=False)

        if response.status_code >= 500:
            raise RemoteApiFailure(response.status_code, remote_message(response))
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if not response.is_success or "error" in body or "access_token" not in body:
            message = remote_message(response)
            logger.warning("%s token endpoint rejected %s: %s", self.provider.name, form["grant_type"], message)
            if rejection is RemoteApiFailure:
                raise RemoteApiFailure(response.status_code, message, context={"provider": self.provider.name})
            raise rejection(message, context={"provider": self.provider.name})

        expires_in = body.get("expires_in")
        return Credential(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            token_type=body.get("token_type", "Bearer"),
            expires_at=utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
        )
