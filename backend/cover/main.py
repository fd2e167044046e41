import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from cover.config import settings
from cover.database import engine
from cover.middleware.logging_config import setup_logging

setup_logging(settings.log_level, json_output=settings.environment != "development")

from cover.api.authz import Authorizer, build_registry, parse_resource_path  # noqa: E402
from cover.api.errors import AppError, ErrorCategory, ErrorKey, not_authorized  # noqa: E402
from cover.api.claim_items import router as claim_items_router  # noqa: E402
from cover.api.claims import router as claims_router  # noqa: E402
from cover.api.items import router as items_router  # noqa: E402
from cover.api.ledger import router as ledger_router  # noqa: E402
from cover.api.members import policy_dependents_router, policy_users_router  # noqa: E402
from cover.api.metrics import router as metrics_router  # noqa: E402
from cover.api.policies import router as policies_router  # noqa: E402
from cover.api.strikes import router as strikes_router  # noqa: E402
from cover.api.users import me_router, router as users_router  # noqa: E402

logger = logging.getLogger("cover")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Startup complete (environment=%s)", settings.environment)
    yield
    await engine.dispose()


app = FastAPI(
    title="Cover",
    description="Item coverage and claims administration",
    version="0.1.0",
    lifespan=lifespan,
)

# The registry never changes after startup.
app.state.authorizer = Authorizer(build_registry())

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

# ── Security headers middleware ──────────────────────────────────────────────
from cover.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402

app.add_middleware(SecurityHeadersMiddleware)

# ── Rate limiting middleware ─────────────────────────────────────────────────
from cover.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

app.add_middleware(RateLimitMiddleware)

# ── Request context middleware (request ID + timing) ─────────────────────────
from cover.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from cover.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


# ── Error handlers ───────────────────────────────────────────────────────────

_QUIET_CATEGORIES = frozenset({
    ErrorCategory.USER,
    ErrorCategory.FORBIDDEN,
    ErrorCategory.UNAUTHORIZED,
    ErrorCategory.NOT_FOUND,
    ErrorCategory.CONFLICT,
})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    level = logging.WARNING if exc.category in _QUIET_CATEGORIES else logging.ERROR
    logger.log(
        level,
        "%s on %s %s: %s",
        exc.key.value, request.method, request.url.path, exc.message,
        exc_info=exc.__cause__ if level == logging.ERROR and exc.__cause__ else None,
    )
    if exc.redirect_url:
        return RedirectResponse(exc.redirect_url, status_code=exc.http_status)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(settings.debug_errors))


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    error = AppError(
        "the resource was changed by another request, reload and try again",
        ErrorKey.CONFLICT,
        ErrorCategory.CONFLICT,
    )
    error.__cause__ = exc
    return await app_error_handler(request, error)


@app.exception_handler(StarletteHTTPException)
async def routing_error_handler(request: Request, exc: StarletteHTTPException):
    """Unmatched routes never reach the authorizer; answer them the same way it would."""
    if exc.status_code not in (404, 405):
        return await http_exception_handler(request, exc)
    try:
        path = parse_resource_path(request.url.path)
    except AppError as error:
        return await app_error_handler(request, error)
    if exc.status_code == 404 or path.resource in app.state.authorizer.registry:
        return await app_error_handler(request, not_authorized())
    return await http_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = AppError(
        "request validation failed",
        ErrorKey.VALIDATION,
        extras={"errors": [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()
        ]},
    )
    return await app_error_handler(request, error)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": f"{type(exc).__name__}: {exc}", "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# Register API routers (/users/me before /users/{id})
app.include_router(me_router)
app.include_router(users_router)
app.include_router(policies_router)
app.include_router(policy_users_router)
app.include_router(policy_dependents_router)
app.include_router(strikes_router)
app.include_router(items_router)
app.include_router(claims_router)
app.include_router(claim_items_router)
app.include_router(ledger_router)
app.include_router(metrics_router)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/health")
async def health_check():
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except (SQLAlchemyError, OSError) as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        await r.ping()
        await r.aclose()
        components["redis"] = {"status": "connected"}
    except (RedisError, OSError) as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] == "connected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    result = {
        "status": overall,
        "environment": settings.environment,
        "components": components,
    }

    _health_cache = result
    _health_cache_ts = now
    return result
