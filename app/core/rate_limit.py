"""Rate limiting for admin endpoints using slowapi.

Chat traffic goes through the gateway's own sliding-window limiter keyed
by (client address, session); slowapi guards the key-testing endpoints.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

limiter = Limiter(key_func=get_remote_address, default_limits=[])

admin_limit = settings.admin_rate_limit
