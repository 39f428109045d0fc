"""Rate limit policies per endpoint class.

The calling layer picks a policy by route classification; the limiter
itself only ever sees the resulting RateLimitConfig.
"""

from typing import Dict, Optional, Union

from ykbuddy.app.core.config import Settings, settings as default_settings
from ykbuddy.app.exceptions import UnknownRatePolicyError
from ykbuddy.app.ratelimit.models import RateLimitConfig

AUTH = "auth"
API = "api"
READ = "read"
WRITE = "write"
SENSITIVE = "sensitive"

POLICY_NAMES = (AUTH, API, READ, WRITE, SENSITIVE)

PolicyLike = Union[str, RateLimitConfig]


def build_policy_table(config: Optional[Settings] = None) -> Dict[str, RateLimitConfig]:
    """Build the policy table from settings.

    Defaults: auth 5/15min, api 100/min, read 200/min, write 30/min,
    sensitive 3/min.
    """
    config = config or default_settings
    return {
        name: RateLimitConfig(
            max_requests=getattr(config, f"rate_limit_{name}_max_requests"),
            window_seconds=getattr(config, f"rate_limit_{name}_window_seconds"),
        )
        for name in POLICY_NAMES
    }


def resolve_policy(
    policy: PolicyLike,
    table: Optional[Dict[str, RateLimitConfig]] = None,
) -> RateLimitConfig:
    """Return the config for a policy name, or the config itself.

    Raises:
        UnknownRatePolicyError: If the name is not in the table
    """
    if isinstance(policy, RateLimitConfig):
        return policy
    table = table if table is not None else build_policy_table()
    try:
        return table[policy]
    except KeyError:
        raise UnknownRatePolicyError(policy) from None
