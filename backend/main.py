# main.py — Kanban API
# Features:
# - Settings built once and shared through app.state
# - Request correlation IDs & timing
# - Session gate: 401 for the API, redirect to /login for pages
# - Security headers
# - JSON {"error": ...} bodies for every failure

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from auth import SessionService, extract_token
from cache import Cache, revoked_session_key
from config import Settings, get_settings
from database import close_db, create_engine, create_session_maker, init_db
from errors import Unauthenticated, register_exception_handlers
from oidc import IdentityGateway
from routers import auth, backup, columns, comments, health, projects, tasks
from telemetry import setup_telemetry

logger = logging.getLogger("kanban")

PUBLIC_PATHS = (
    "/login",
    "/api/auth/login",
    "/api/auth/callback",
    "/api/health",
    "/docs",
    "/redoc",
    "/openapi.json",
)


def is_public_path(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in PUBLIC_PATHS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Kanban API...")
    await init_db(app.state.engine)
    setup_telemetry(app.state.settings, app=app, engine=app.state.engine)
    yield
    logger.info("🛑 Shutting down Kanban API...")
    await app.state.http_client.aclose()
    await app.state.cache.close()
    await close_db(app.state.engine)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )

    app = FastAPI(
        title="Kanban",
        description="Multi-tenant Kanban project management API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Shared resources, created once per process
    app.state.settings = settings
    app.state.engine = create_engine(settings)
    app.state.session_maker = create_session_maker(app.state.engine)
    app.state.cache = Cache.from_url(settings.redis_url)
    app.state.http_client = httpx.AsyncClient()
    app.state.identity = IdentityGateway(settings, app.state.http_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
        expose_headers=["X-Request-ID", "X-Correlation-ID"],
    )

    # ============================================================
    # MIDDLEWARE: Session gate
    # ============================================================

    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        path = request.url.path
        if request.method == "OPTIONS" or is_public_path(path):
            return await call_next(request)

        token = extract_token(request)
        try:
            if not token:
                raise Unauthenticated()
            session = SessionService(settings).verify_token(token)
            if session.jti and await request.app.state.cache.get(revoked_session_key(session.jti)):
                raise Unauthenticated("Session has been revoked")
        except Unauthenticated:
            if path.startswith("/api/"):
                return JSONResponse(status_code=401, content={"error": "Unauthorized"})
            return RedirectResponse("/login", status_code=302)
        return await call_next(request)

    # ============================================================
    # MIDDLEWARE: Security Headers
    # ============================================================

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # ============================================================
    # MIDDLEWARE: Correlation IDs + Timing
    # ============================================================

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        correlation_id = request.headers.get("X-Correlation-ID", request_id)
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        logger.info(
            f"{request.method} {request.url.path} → {response.status_code} "
            f"({duration:.3f}s) [rid={request_id[:8]}]"
        )
        return response

    register_exception_handlers(app)

    # ============================================================
    # ROUTERS
    # ============================================================

    app.include_router(auth.pages_router)
    app.include_router(auth.router)
    app.include_router(projects.router)
    app.include_router(columns.router)
    app.include_router(tasks.router)
    app.include_router(comments.router)
    app.include_router(health.router)
    app.include_router(backup.router)

    @app.get("/")
    async def root():
        return {
            "name": "Kanban",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/api/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=not settings.is_production,
        workers=settings.workers,
    )
