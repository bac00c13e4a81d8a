"""
connectors — external knowledge sources and their connection lifecycle.

Provides:
  • OAuth2 connectors (Dropbox, Google Drive, SharePoint) and SSO initiation
  • Callback handling (code → token exchange) behind a per-source state machine
  • Fernet-encrypted credential vault with token refresh
  • Content fetchers, one per source type (``connectors.fetchers``)
"""
