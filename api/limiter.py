"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (app.state.limiter, used by the 429 handler)
and api/routes/auth.py (to apply the per-route limits).

Two tiers, both fixed-window and keyed by client address:
  general  -- the loose limit shared by /logout and /profile (one counter per
              address, scope "general"). Read via general_limit().
  auth     -- the tight limit shared by /signup, /login and /refresh (one
              counter per address across all three). Read via auth_limit().

Both limits are read from settings on every check, so a changed Settings
object takes effect without rebuilding the limiter. /health carries no
decorator and is never counted.

headers_enabled adds X-RateLimit-Limit / X-RateLimit-Remaining /
X-RateLimit-Reset and Retry-After to limited responses.

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and rate limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def auth_limit() -> str:
    return get_settings().auth_rate_limit


def general_limit() -> str:
    return get_settings().general_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=get_settings().rate_limit_storage_uri,
    strategy="fixed-window",
    headers_enabled=True,
)
