# api/rate_limit.py
import os
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from fastapi import FastAPI
from dotenv import load_dotenv

load_dotenv()
RATE_LIMIT = os.getenv("RATE_LIMIT", "100/minute")

limiter = Limiter(key_func=get_remote_address, default_limits=[])


def register_rate_limit(app: FastAPI):
    """
    Attach the slowapi limiter to the app and install the 429 handler.

    Args:
        app (FastAPI): The application instance to configure

    Note:
        Must be called during application setup, before requests are served.
        Per-route limits use RATE_LIMIT (env, default "100/minute").
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
