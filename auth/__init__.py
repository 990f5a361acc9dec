"""
auth — caller identity for the connection routes.

Provides:
  • Signed bearer token creation & verification
  • ``get_current_user_id`` FastAPI dependency
"""
