"""
Connector API routes — list connectors, current user, OAuth login/callback, logout.

Route prefix: /api/connector
"""

from __future__ import annotations

import html
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, RedirectResponse

from api.dependencies import get_oauth_states, get_registry, get_session_id
from connectors.errors import ConnectorError, InvalidInput, NotAuthenticated
from connectors.oauth import OAuthStateStore
from connectors.registry import ConnectorRegistry
from utils.schemas import ConnectorData, ConnectorType, ConnectorUser

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


@router.get("/", response_model=List[ConnectorData])
async def list_connectors(
    connector_type: Optional[ConnectorType] = Query(None, alias="type"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> List[ConnectorData]:
    """Connectors of one type (or all) with their login state for this session."""
    return [await c.describe(session_id) for c in registry.list(connector_type)]


@router.get("/user", response_model=ConnectorUser)
async def get_user(
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    connector_type: Optional[ConnectorType] = Query(None, alias="type"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> ConnectorUser:
    """Account behind this session's login on one connector."""
    connector = registry.get(connector_id, connector_type)
    if not await connector.is_authenticated(session_id):
        raise NotAuthenticated(f"Not logged in to {connector.display_name}")
    return await connector.get_user(session_id)


@router.get("/login")
async def login(
    connector_id: str = Query(..., alias="connectorId"),
    connector_type: Optional[ConnectorType] = Query(None, alias="type"),
    redirect: Optional[str] = Query(None),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
):
    """
    Send the browser to the provider's consent page.

    Connectors that need no login (or are already logged in) go straight
    to the callback page.
    """
    connector = registry.get(connector_id, connector_type)
    callback = f"/api/connector/login/callback?connectorId={connector.connector_id}"
    if await connector.is_authenticated(session_id):
        return RedirectResponse(callback, status_code=302)

    context: Dict[str, Any] = {"type": connector.connector_type.value}
    # Same-origin paths only
    if redirect and redirect.startswith("/") and not redirect.startswith("//"):
        context["redirect"] = redirect
    url = await connector.auth_url(session_id, context)
    return RedirectResponse(url or callback, status_code=302)


@router.get("/login/callback")
async def login_callback(
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
    states: OAuthStateStore = Depends(get_oauth_states),
) -> HTMLResponse:
    """
    OAuth callback — the provider redirects here after consent.

    Exchanges the code, stores the credential in the session and returns a
    small HTML page that notifies the opener window and auto-closes.
    """
    if not connector_id and state:
        pending = states.peek(state)
        connector_id = pending.connector_id if pending else None
    label = connector_id or "connector"

    if error:
        logger.info("OAuth provider returned error for %s: %s", label, error)
        return HTMLResponse(_callback_html(False, error_description or error, label))

    try:
        if not connector_id:
            raise InvalidInput("unknown or expired login attempt")
        connector = registry.get(connector_id)
        context: Dict[str, Any] = {}
        if code and state:
            context = await connector.complete_oauth(session_id, code, state)
        elif not await connector.is_authenticated(session_id):
            raise InvalidInput("missing authorization code")
    except ConnectorError as exc:
        logger.warning("OAuth callback failed for %s: %s", label, exc)
        return HTMLResponse(_callback_html(False, f"Connection failed: {exc.message}", label))

    logger.info("Connector %s logged in (session %s)", connector.connector_id, session_id[:8])
    return HTMLResponse(
        _callback_html(True, f"Connected to {connector.display_name}", connector.connector_id, context)
    )


@router.post("/logout")
async def logout(
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    connector_type: Optional[ConnectorType] = Query(None, alias="type"),
    session_id: str = Depends(get_session_id),
    registry: ConnectorRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    connector = registry.get(connector_id, connector_type)
    await connector.logout(session_id)
    return {"status": "logged_out", "connectorId": connector.connector_id}


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(
    success: bool,
    message: str,
    connector_id: str,
    context: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Small HTML page shown in the OAuth popup after redirect.
    Sends a postMessage to the opener and auto-closes.
    """
    status_text = "Connected!" if success else "Failed"
    color = "#00d992" if success else "#ef4444"
    payload = json.dumps(
        {
            "type": "login",
            "connectorId": connector_id,
            "success": success,
            "message": message,
            "context": context or {},
        }
    ).replace("</", "<\\/")

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>{html.escape(connector_id)} {status_text}</title>
    <style>
        body {{
            font-family: system-ui, sans-serif;
            display: flex; align-items: center; justify-content: center;
            height: 100vh; margin: 0;
        }}
        h2 {{ color: {color}; margin: 16px 0 8px; }}
        .close-note {{ color: #636a80; font-size: 0.7rem; margin-top: 20px; }}
    </style>
</head>
<body>
    <div>
        <h2>{status_text}</h2>
        <p>{html.escape(message)}</p>
        <p class="close-note">This window will close automatically…</p>
    </div>
    <script>
        const payload = {payload};
        if (window.opener) {{
            window.opener.postMessage(payload, '*');
            setTimeout(() => window.close(), 2000);
        }} else if (payload.context.redirect) {{
            window.location.href = payload.context.redirect;
        }}
    </script>
</body>
</html>"""
