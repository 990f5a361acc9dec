"""
connectors — OAuth connections to social platforms.

Provides the credential lifecycle behind the dashboard's Connections page:
  • Platform catalogue and provider registry
  • CSRF state issue / single-use verification
  • Code → token exchange and refresh-token grants
  • Fernet-encrypted credential storage with soft disconnects
  • Periodic refresh ahead of expiry
"""
