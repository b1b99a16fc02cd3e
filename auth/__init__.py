"""
auth — browser sessions.

Provides:
  • Signed session cookies (HMAC-SHA256)
  • ``SessionStore`` implementations holding per-session credentials
  • ``get_session_id`` FastAPI dependency
"""
