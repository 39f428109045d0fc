"""HTTP client construction for upstream calls.

The application creates one pooled client in its lifespan and keeps it on
app.state; upstream services receive it explicitly.
"""

from typing import Any, Optional

import httpx

from ykbuddy.app.core.config import Settings, settings as default_settings


def create_http_client(config: Optional[Settings] = None, **kwargs: Any) -> httpx.AsyncClient:
    """Create an HTTP client with pool limits and granular timeouts.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        config: Settings providing the httpx_* values
        **kwargs: Passed through to httpx.AsyncClient (e.g. transport)

    Returns:
        A new httpx.AsyncClient instance
    """
    config = config or default_settings

    # connect: establish the socket, read: wait for response data,
    # write: send the request body, pool: acquire a pooled connection
    timeout = httpx.Timeout(
        connect=config.httpx_connect_timeout,
        read=config.httpx_read_timeout,
        write=config.httpx_write_timeout,
        pool=config.httpx_pool_timeout,
    )
    limits = httpx.Limits(
        max_connections=config.httpx_max_connections,
        max_keepalive_connections=config.httpx_max_keepalive_connections,
        keepalive_expiry=config.httpx_keepalive_expiry,
    )
    kwargs.setdefault("timeout", timeout)
    kwargs.setdefault("limits", limits)
    kwargs.setdefault("headers", {"User-Agent": "ykbuddy/0.1"})
    return httpx.AsyncClient(**kwargs)
