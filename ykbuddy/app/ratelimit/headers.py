"""HTTP header contract for rate limit results.

Header names and value formats are relied on by existing clients and
must not change.
"""

import math
import time
from datetime import datetime, timezone
from typing import Dict, Optional

from ykbuddy.app.ratelimit.models import RateLimitResult


def format_reset_time(reset_time: float) -> str:
    """Format an epoch timestamp as ISO-8601 UTC with milliseconds.

    >>> format_reset_time(0)
    '1970-01-01T00:00:00.000Z'
    """
    moment = datetime.fromtimestamp(reset_time, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def seconds_until(reset_time: float, now: Optional[float] = None) -> int:
    """Whole seconds until reset_time, rounded up and never negative."""
    now = time.time() if now is None else now
    return max(0, math.ceil(reset_time - now))


def build_rate_limit_headers(
    result: RateLimitResult,
    now: Optional[float] = None,
) -> Dict[str, str]:
    """Build X-RateLimit-* headers, plus Retry-After for rejections."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": format_reset_time(result.reset_time),
    }
    if not result.allowed:
        retry_after = result.retry_after
        if retry_after is None:
            retry_after = seconds_until(result.reset_time, now)
        headers["Retry-After"] = str(retry_after)
    return headers
