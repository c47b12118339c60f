from .security import create_access_token, create_actor_token, verify_token
from .dependencies import get_current_actor
from .responses import error_response, paginated_response

__all__ = [
    "create_access_token",
    "create_actor_token",
    "verify_token",
    "get_current_actor",
    "error_response",
    "paginated_response",
]
