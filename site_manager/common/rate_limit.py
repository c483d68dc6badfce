"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance imported by the auth router for
tighter limits on credential endpoints, and wired into the app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Default: 60 requests/minute per client IP for all endpoints.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
)

# Applied to login / register / OTP endpoints.
AUTH_RATE_LIMIT = "10/minute"
