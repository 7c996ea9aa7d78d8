import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config import settings
from app.database import engine
from app.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)

from app.api.billing import router as billing_router  # noqa: E402
from app.api.cases import router as cases_router  # noqa: E402
from app.api.metrics import router as metrics_router  # noqa: E402
from app.billing.errors import BillingError  # noqa: E402
from app.billing.reference import load_coding_rules, load_fee_schedule  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: fail fast on bad reference data, verify DB connection
    load_fee_schedule(settings.fee_schedule_path)
    load_coding_rules(settings.coding_rules_path)
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="Billing Review Service",
    description="Medical bill rate reasonableness and duplicate-charge detection for legal cases",
    version="0.1.0",
    lifespan=lifespan,
)

# ── CORS (tightened) ─────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

# ── Request context middleware (request ID + timing) ─────────────────────────
from app.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from app.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    logging.getLogger("app").info(
        "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logging.getLogger("app").error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    detail = f"{type(exc).__name__}: {exc}"
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": detail, "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# Register API routers
app.include_router(billing_router)
app.include_router(cases_router)
app.include_router(metrics_router)


# ── Health check ─────────────────────────────────────────────────────────────

@app.get("/api/health")
async def health_check():
    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    fee_schedule = load_fee_schedule(settings.fee_schedule_path)
    coding_rules = load_coding_rules(settings.coding_rules_path)
    components["reference_data"] = {
        "status": "loaded",
        "fee_schedule": fee_schedule.version,
        "coding_rules": coding_rules.version,
    }

    return {
        "status": "healthy" if components["database"]["status"] == "connected" else "degraded",
        "environment": settings.environment,
        "components": components,
    }
