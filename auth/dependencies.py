"""
FastAPI dependencies for the browser session.

``get_session_id`` resolves the session from the signed cookie, or starts
a new one.  New cookies are written by the ``session_cookie`` middleware.
"""

from __future__ import annotations

from fastapi import Request

from auth.tokens import create_session_token, verify_session_token

NEW_SESSION_COOKIE = "new_session_cookie"


async def get_session_id(request: Request) -> str:
    settings = request.app.state.settings
    store = request.app.state.session_store

    token = request.cookies.get(settings.session_cookie_name)
    session_id = verify_session_token(token, settings.session_secret) if token else None
    if session_id and await store.get(session_id) is not None:
        return session_id

    session = await store.create()
    setattr(
        request.state,
        NEW_SESSION_COOKIE,
        create_session_token(session.session_id, settings.session_secret, settings.session_expiry_seconds),
    )
    return session.session_id
