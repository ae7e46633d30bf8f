# kiosk/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

import os
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from kiosk.config import settings
from kiosk.database import create_tables
from kiosk.errors import VisitorNotFound
from kiosk.routers import badges, camera, health, printing, sessions, storage, users, visitors
from kiosk.schemas.visitor import VisitorOut
from kiosk.services.camera_service import release_camera
from kiosk.services.visitor_store import VisitorStore, get_visitor_store
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="Event Check-in Kiosk API",
    description="QR check-in, AI avatar badges and label printing for event visitors.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (kiosk browser and admin screens call the API) ─────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to kiosk origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
# Opened directly by the kiosk browser: print window, QR landing, stored images
OPEN_PATHS = {"/api/health", "/docs", "/redoc", "/openapi.json", "/print", "/register"}
OPEN_PREFIXES = ("/storage/",)


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Requires X-API-Key (or ?api_key=) on everything else when API_KEY is set."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in OPEN_PATHS or path.startswith(OPEN_PREFIXES):
            return await call_next(request)

        supplied = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if supplied != settings.API_KEY:
            logger.warning(f"[AUTH] Rejected {request.method} {path} from {request.client.host if request.client else '?'}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.1f}"
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({elapsed_ms:.1f}ms)")
    return response


# ── Error Handlers ───────────────────────────────────────────────────────────
# Every error response is {"error": "<human readable message>"}
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        field = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        message = f"{field}: {errors[0].get('msg')}" if field else errors[0].get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(users.router,    prefix="/api", tags=["Visitors"])
app.include_router(visitors.router, prefix="/api", tags=["Visitor Management"])
app.include_router(storage.router,  prefix="/api", tags=["Storage"])
app.include_router(badges.router,   prefix="/api", tags=["Badges"])
app.include_router(sessions.router, prefix="/api", tags=["Registration Wizard"])
app.include_router(camera.router,   prefix="/api", tags=["Camera"])
app.include_router(health.router,   prefix="/api", tags=["Health"])
app.include_router(printing.router, tags=["Printing"])


# ── Registration landing (target of the visitor QR code) ─────────────────────
@app.get("/register", tags=["Registration Wizard"], summary="QR code landing for a visitor")
def register_landing(id: Optional[str] = None, store: VisitorStore = Depends(get_visitor_store)):
    """Resolves the scanned ref; the kiosk front end then starts a session."""
    if not id:
        raise HTTPException(status_code=400, detail="Reference ID is required")
    try:
        visitor = store.get_by_ref(id)
    except VisitorNotFound:
        raise HTTPException(status_code=404, detail="Visitor not found")
    return {
        "user": VisitorOut.model_validate(visitor),
        "sessionsUrl": "/api/sessions",
    }


# Local storage backend serves uploaded objects itself
if settings.STORAGE_BACKEND == "local":
    os.makedirs(settings.STORAGE_DIR, exist_ok=True)
    app.mount("/storage", StaticFiles(directory=settings.STORAGE_DIR), name="storage")


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 Kiosk backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🗄️  Storage backend: {settings.STORAGE_BACKEND}")
    logger.info(f"🌐 Public URL: {settings.PUBLIC_BASE_URL}")
    if not settings.OPENAI_API_KEY:
        logger.warning("⚠️  OPENAI_API_KEY not set, avatar generation will fail")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 Kiosk backend shutting down...")
    release_camera()
