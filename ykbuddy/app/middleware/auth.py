import hmac

from fastapi import Request

from ykbuddy.app.exceptions import AuthenticationError


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """Validate admin token for protected endpoints.

    Admin endpoints stay closed while no admin_token is configured.

    Raises:
        AuthenticationError: If admin token is missing or invalid
    """
    expected_token = request.app.state.settings.admin_token
    token = get_bearer_token(request) or ""

    # Constant-time comparison
    if not expected_token or not hmac.compare_digest(token, expected_token):
        raise AuthenticationError()

    return "admin"
