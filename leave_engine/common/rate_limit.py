"""Rate limiting configuration using slowapi.

The Limiter is wired into the app in main.py; bulk endpoints carry their
own tighter limit via ``@limiter.limit(BULK_APPROVE_LIMIT)``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

DEFAULT_LIMIT = "120/minute"
BULK_APPROVE_LIMIT = "20/minute"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[DEFAULT_LIMIT],
)
