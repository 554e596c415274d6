"""
api/limiter.py -- Process-wide slowapi Limiter.

Keyed on the client address with an in-memory counter store. api/main.py
publishes it as app.state.limiter; route modules decorate handlers with
@limiter.limit(...) placed beneath the router decorator. Tests call
limiter.reset() between cases.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
