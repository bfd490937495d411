"""Rate limiter singleton - import from here to avoid circular deps."""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def _actor_or_address(request: Request) -> str:
    """Key approval actions by bearer token when present, else by client IP."""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:]
    return get_remote_address(request)


limiter = Limiter(key_func=_actor_or_address)
