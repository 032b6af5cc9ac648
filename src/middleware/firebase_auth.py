"""Firebase ID token verification middleware for FastAPI.

Validates the Bearer token on every request (except public routes),
extracts claims, and sets ``request.state.auth`` with the authenticated
user context that downstream route handlers consume via ``get_current_user``.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt as pyjwt
from fastapi import Request, Response
from jwt import PyJWKClient
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings
from src.dependencies import AuthContext

logger = logging.getLogger("arcular.auth")

# Paths that do not require authentication
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc")


def _unauthorized(detail: str) -> Response:
    return Response(
        content=f'{{"detail":"{detail}"}}',
        status_code=401,
        media_type="application/json",
    )


class FirebaseAuthMiddleware(BaseHTTPMiddleware):
    """Verify Firebase-issued ID tokens and populate request.state.auth."""

    def __init__(
        self,
        app: Any,
        settings: Settings | None = None,
        jwks_client: PyJWKClient | None = None,
    ) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()
        self._jwks_client = jwks_client or PyJWKClient(
            self._settings.firebase_jwks_url,
            cache_keys=True,
            lifespan=3600,
        )

    def decode(self, token: str) -> dict:
        """Verify signature, audience and issuer; return the claims."""
        project_id = self._settings.firebase_project_id
        signing_key = self._jwks_client.get_signing_key_from_jwt(token)
        return pyjwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=project_id,
            issuer=FIREBASE_ISSUER_PREFIX + project_id,
        )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        # OPTIONS requests pass through (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header")

        token = auth_header.removeprefix("Bearer ").strip()

        try:
            payload = self.decode(token)
        except pyjwt.ExpiredSignatureError:
            return _unauthorized("Token expired")
        except pyjwt.PyJWKClientError as exc:
            logger.warning("Signing key lookup failed: %s", exc)
            return _unauthorized("Invalid token")
        except pyjwt.InvalidTokenError as exc:
            logger.warning("ID token validation failed: %s", exc)
            return _unauthorized("Invalid token")

        uid: str = payload.get("user_id") or payload.get("sub", "")
        if not uid:
            return _unauthorized("Invalid token")

        request.state.auth = AuthContext(
            user_id=uid,
            email=payload.get("email"),
            user_type=payload.get("type"),
        )

        return await call_next(request)
