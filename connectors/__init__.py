"""
connectors — storage and hosting backends for websites.

Provides a generic connector framework that handles:
  • OAuth2 authorization-code login, with single-use state tokens
  • Per-session credential storage & lazy refresh
  • Fernet encryption of credentials at rest
  • A resilient HTTP client (pagination, rate limits, chunked uploads)

Each backend (local filesystem, GitLab) subclasses StorageConnector or
HostingConnector and is registered in ConnectorRegistry under its tag.
"""
