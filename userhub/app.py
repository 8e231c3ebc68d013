from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from userhub.api.error_handling import register_exception_handlers
from userhub.api.routes import router
from userhub.config import Settings
from userhub.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Acquire the runtime's connections on startup and release them on shutdown."""
    from userhub.service.runtime import get_runtime

    runtime = get_runtime()
    try:
        await runtime.startup()
    except Exception as exc:
        logger.error("startup_failed", error_type=type(exc).__name__, error=str(exc))
        raise

    yield

    try:
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="userhub", version=__version__, lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with a correlation id for logs and the X-Request-ID header.

    A client-supplied X-Request-ID is reused; otherwise a UUID is generated.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Token-bearing responses must not be cached by intermediaries
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


register_exception_handlers(app)
app.include_router(router)


HEALTH_CHECK_TIMEOUT_SECONDS = 3


@app.get("/healthz")
async def health() -> JSONResponse:
    """Report store and session cache reachability."""
    from userhub.service.runtime import get_runtime

    runtime = get_runtime()

    async def _run_bounded(label: str, func) -> bool:
        try:
            await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except Exception as exc:
            logger.error("health_check_failed", component=label, error=str(exc))
        return False

    db_ok = await _run_bounded("database", runtime.store.verify_connection)
    cache_ok = await _run_bounded("cache", runtime.cache.verify_connection)
    checks: Dict[str, Dict[str, Any]] = {
        "database": {"status": "healthy" if db_ok else "unhealthy"},
        "cache": {"status": "healthy" if cache_ok else "unhealthy"},
    }
    healthy = db_ok and cache_ok
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def create_app() -> FastAPI:
    return app
