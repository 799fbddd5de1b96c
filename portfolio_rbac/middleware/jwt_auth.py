"""
JWT Auth Middleware: Parses JWT from Authorization header, sets g.jwt_user_id.

The portfolio endpoints take the acting user from ``g.jwt_user_id``. A missing,
expired or invalid token leaves it as None; ``require_jwt`` turns that into a
401 before the view runs.
"""

import logging
from functools import wraps

import jwt as pyjwt
from flask import g, request

from portfolio_rbac.services.jwt_service import decode_access_token
from portfolio_rbac.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            sub = payload.get("sub")
            g.jwt_user_id = str(sub) if sub is not None else None
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
        except pyjwt.InvalidTokenError as exc:
            logger.info("Invalid access token on %s: %s", path, exc)


def require_jwt(f):
    """Reject the request with 401 unless a valid bearer token was presented."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not getattr(g, "jwt_user_id", None):
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)

    return decorated
