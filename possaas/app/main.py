import time
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg import errors as pg_errors

from .config import settings
from .db import close_pool, get_conn
from .logs import json_log
from .routers.analytics import router as analytics_router
from .routers.auth import router as auth_router
from .routers.cashflow import router as cashflow_router
from .routers.categories import router as categories_router
from .routers.content import router as content_router
from .routers.customers import router as customers_router
from .routers.dashboard import router as dashboard_router
from .routers.inventory import router as inventory_router
from .routers.notifications import router as notifications_router
from .routers.products import router as products_router
from .routers.quota import router as quota_router
from .routers.sales import router as sales_router
from .routers.stores import router as stores_router
from .routers.subscriptions import router as subscriptions_router
from .routers.suppliers import router as suppliers_router
from .routers.telegram import router as telegram_router
from .routers.tenants import router as tenants_router
from .routers.themes import router as themes_router
from .routers.users import router as users_router
from .routers.webhooks import router as webhooks_router
from .routers.whatsapp import router as whatsapp_router

SERVICE_NAME = "possaas-api"

app = FastAPI(title="POS SaaS API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _client_error(status_code: int, detail: str, exc: Exception) -> JSONResponse:
    content = {"detail": detail}
    if settings.is_dev:
        content["error"] = str(exc)
    return JSONResponse(status_code=status_code, content=content)


# Constraint and cast errors that slip past request validation are the client's fault.
@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    return _client_error(400, "invalid value", exc)


@app.exception_handler(pg_errors.ForeignKeyViolation)
def _foreign_key_violation(_req: Request, exc: Exception):
    return _client_error(400, "invalid reference", exc)


@app.exception_handler(pg_errors.NotNullViolation)
def _not_null_violation(_req: Request, exc: Exception):
    return _client_error(400, "missing required value", exc)


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    return _client_error(400, "constraint violation", exc)


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    return _client_error(409, "conflict", exc)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "invalid request", "errors": errors})


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    content = {"detail": "internal server error", "request_id": rid}
    if settings.is_dev:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = request.client.host if request.client else None

    try:
        response = await call_next(request)
    except Exception as exc:
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not path.startswith("/health"):
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for _router in (
    auth_router,
    tenants_router,
    stores_router,
    users_router,
    products_router,
    categories_router,
    suppliers_router,
    customers_router,
    inventory_router,
    sales_router,
    dashboard_router,
    cashflow_router,
    subscriptions_router,
    quota_router,
    webhooks_router,
    whatsapp_router,
    telegram_router,
    analytics_router,
    content_router,
    themes_router,
    notifications_router,
):
    app.include_router(_router)


@app.on_event("startup")
def _startup():
    settings.check_secrets()
    ok, err = _db_health()
    if ok:
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    else:
        json_log("warning", "startup.db_probe_failed", env=settings.env, error=err)


@app.on_event("shutdown")
def _shutdown():
    close_pool()


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/")
def root():
    return {"status": "ok", "service": SERVICE_NAME}


def _health_payload(req: Request, status: str, db: str) -> dict:
    return {
        "status": status,
        "env": settings.env,
        "db": db,
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": _current_request_id(req),
    }


@app.get("/health")
def health(req: Request):
    ok, err = _db_health()
    if not ok:
        content = _health_payload(req, "degraded", "down")
        if settings.is_dev:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return _health_payload(req, "ok", "ok")


@app.get("/health/live")
def health_live(req: Request):
    return {"status": "ok", "env": settings.env, "service": SERVICE_NAME, "request_id": _current_request_id(req)}


@app.get("/health/ready")
def health_ready(req: Request):
    ok, err = _db_health()
    if not ok:
        content = _health_payload(req, "degraded", "down")
        if settings.is_dev:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return _health_payload(req, "ready", "ok")
