"""
ASGI middleware shared by every API Weaver service.

Outermost first: RateLimitMiddleware -> RequestLogMiddleware -> AuthMiddleware.
"""

from .auth import AuthGate, AuthMiddleware, AuthResult, AuthStatus
from .rate_limit import RateLimiter, RateLimitMiddleware
from .request_log import RequestLogMiddleware

__all__ = [
    "AuthGate",
    "AuthMiddleware",
    "AuthResult",
    "AuthStatus",
    "RateLimiter",
    "RateLimitMiddleware",
    "RequestLogMiddleware",
]
