"""
auth — session handling.

Provides:
  • Signed session token creation & verification
  • The session resolver (cookie first, then Bearer header)
  • ``get_current_user_id`` / ``get_optional_user_id`` FastAPI dependencies
  • The auth-provider callback route that establishes the session cookie
"""
