from __future__ import annotations

import logging
import secrets

from fastapi import Request

from sentinela.config import settings
from sentinela.errors import Forbidden

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'X-CSRF-Token'
SAFE_METHODS = frozenset({'GET', 'HEAD', 'OPTIONS'})


def install_csrf_cookie_middleware(app) -> None:
    """Hand every client a readable token cookie; the SPA echoes it back in a header."""

    @app.middleware('http')
    async def csrf_cookie_middleware(request: Request, call_next):
        presented = request.cookies.get(CSRF_COOKIE_NAME)
        request.state.csrf_token = presented or secrets.token_urlsafe(24)

        response = await call_next(request)
        if not presented:
            response.set_cookie(
                key=CSRF_COOKIE_NAME,
                value=request.state.csrf_token,
                httponly=False,
                secure=settings.session_cookie_secure,
                samesite=settings.session_cookie_samesite,
            )
        return response


async def verify_csrf(request: Request) -> None:
    if request.method in SAFE_METHODS:
        return

    header_token = request.headers.get(CSRF_HEADER_NAME) or ''
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME) or ''
    if not header_token or not secrets.compare_digest(header_token.encode(), cookie_token.encode()):
        logger.warning('Rejected %s %s: CSRF token mismatch', request.method, request.url.path, extra={'path': request.url.path})
        raise Forbidden('Missing or invalid CSRF token')
