"""Client identity derivation for rate limiting."""

from typing import Optional

from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"


def get_client_identifier(request: Request, user_id: Optional[str] = None) -> str:
    """Get rate limit identifier for the request.

    An authenticated user id wins over the network address: clients
    sharing a NAT or proxy address would otherwise throttle each other.
    The user id comes from the argument or from request.state.user_id as
    set by the auth layer. Otherwise the first X-Forwarded-For hop, then
    X-Real-IP, then "unknown".

    Returns:
        "user:<id>" or "ip:<address>"
    """
    user_id = user_id or getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"

    forwarded = request.headers.get("X-Forwarded-For", "")
    client_ip = forwarded.split(",")[0].strip()
    if not client_ip:
        client_ip = request.headers.get("X-Real-IP", "").strip()

    return f"ip:{client_ip or UNKNOWN_CLIENT}"
