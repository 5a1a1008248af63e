# api/rate_limit.py
from fastapi import FastAPI
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)


def register_rate_limit(app: FastAPI):
    """
    Attach the per-client slowapi limiter to the FastAPI app.

    Sets ``app.state.limiter`` and answers RateLimitExceeded with 429.
    Limits themselves are declared per route with ``@limiter.limit``.

    Args:
        app (FastAPI): The FastAPI application instance to configure
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
