from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import sessionmaker

from sentinela.db import SessionLocal, init_db
from sentinela.errors import CustodyError
from sentinela.logging_config import configure_logging
from sentinela.routers import auth, cautelas, inventory, personnel, reports, system
from sentinela.security.csrf import install_csrf_cookie_middleware
from sentinela.security.headers import install_security_headers
from sentinela.security.sessions import install_auth_session_middleware

logger = logging.getLogger(__name__)


def create_app(session_factory: sessionmaker | None = None) -> FastAPI:
    factory = session_factory or SessionLocal

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if session_factory is None:
            configure_logging()
            init_db(factory)
        yield

    app = FastAPI(title='Sentinela - Controle de Material Bélico', lifespan=lifespan)
    app.state.session_factory = factory

    @app.exception_handler(CustodyError)
    async def custody_error_handler(request: Request, exc: CustodyError):
        if exc.status_code >= 500:
            logger.error('%s on %s: %s', exc.kind, request.url.path, exc.detail, extra={'path': request.url.path})
        return JSONResponse({'kind': exc.kind, 'detail': exc.detail}, status_code=exc.status_code)

    # Registration order matters: the last middleware added runs first.
    install_auth_session_middleware(app)
    install_csrf_cookie_middleware(app)
    install_security_headers(app)

    app.include_router(auth.router)
    app.include_router(inventory.router)
    app.include_router(personnel.router)
    app.include_router(cautelas.router)
    app.include_router(reports.router)
    app.include_router(system.router)

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    return app


app = create_app()
