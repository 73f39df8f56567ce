from .decorators import require_auth, current_user_id
from .tokens import create_access_token, verify_access_token

__all__ = ["require_auth", "current_user_id", "create_access_token", "verify_access_token"]
