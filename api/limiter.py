"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

One shared instance means every route counts against the same in-memory
store. Separate instances per module would each keep their own counters.

Limits are per client IP:
  LOGIN_LIMIT -- password login attempts (brute-force mitigation).
  CODE_LIMIT  -- verification-code and password-reset code requests, each of
                 which triggers an SMS.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

LOGIN_LIMIT = "10/minute"
CODE_LIMIT = "5/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
