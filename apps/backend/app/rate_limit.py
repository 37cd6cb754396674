"""
IP-based rate limiting for public query endpoints.
"""
import os
from slowapi import Limiter
from slowapi.util import get_remote_address

# 60 requests per minute in dev, 120 in production
RATE_LIMIT_SEARCH = os.getenv("RATE_LIMIT_SEARCH", "60/minute" if os.getenv("GOVJOBS_ENV") == "dev" else "120/minute")
RATE_LIMIT_GEO = os.getenv("RATE_LIMIT_GEO", "30/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)
