from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.auth import router as auth_router
from .routers.sales import router as sales_router
from .routers.checkout import router as checkout_router
from .routers.stock import router as stock_router
from .routers.warehouses import router as warehouses_router
from .routers.products import router as products_router
from .routers.customers import router as clients_router
from .routers.pricing import router as pricing_router
from .routers.comex import router as comex_router
from .routers.users import router as users_router
from .routers.dashboard import router as dashboard_router
from .routers.supplies import router as supplies_router
from .routers.knowledge import router as knowledge_router
from .config import settings
from .db import get_admin_conn, open_pools, close_pools
from .errors import AppError
from .logs import json_log

SERVICE_NAME = "perla-erp-backend"

app = FastAPI(title="Perla ERP / Storefront API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


@app.exception_handler(AppError)
def _app_error(req: Request, exc: AppError):
    if exc.status_code >= 500:
        json_log(
            "error",
            "http.request.app_error",
            request_id=_current_request_id(req),
            path=req.url.path,
            kind=exc.kind.value,
            error=exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Constraint and cast errors that escape a route become 4xx.
# Raw database text is only echoed in local/dev.
_PG_ERROR_RESPONSES = {
    pg_errors.InvalidTextRepresentation: (400, "invalid value"),  # bad enum cast or malformed uuid
    pg_errors.ForeignKeyViolation: (400, "invalid reference"),
    pg_errors.UniqueViolation: (409, "conflict"),
    pg_errors.CheckViolation: (400, "constraint violation"),
}


def _pg_error_handler(status_code: int, detail: str):
    def _handler(_req: Request, exc: Exception):
        content = {"detail": detail}
        if settings.env in {"local", "dev"}:
            content["error"] = str(exc)
        return JSONResponse(status_code=status_code, content=content)
    return _handler


for _exc_type, (_status, _detail) in _PG_ERROR_RESPONSES.items():
    app.add_exception_handler(_exc_type, _pg_error_handler(_status, _detail))


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


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
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response


# The admin app and the storefront are served from other origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Authorization is per route (deps.require_view); checkout and the public catalog are open.
app.include_router(auth_router)
app.include_router(checkout_router)
app.include_router(sales_router)
app.include_router(stock_router)
app.include_router(warehouses_router)
app.include_router(products_router)
app.include_router(clients_router)
app.include_router(pricing_router)
app.include_router(comex_router)
app.include_router(users_router)
app.include_router(dashboard_router)
app.include_router(supplies_router)
app.include_router(knowledge_router)


@app.on_event("startup")
def _startup():
    try:
        open_pools()
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    except Exception as exc:
        json_log("warning", "startup.db_check_failed", env=settings.env, error=str(exc))


@app.on_event("shutdown")
def _shutdown():
    close_pools()


@app.get("/")
def root():
    return {"status": "ok", "service": "api"}


def _db_health():
    try:
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    if not ok:
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content


@app.get("/health/live")
def health_live(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": SERVICE_NAME,
        "request_id": _current_request_id(req),
    }


@app.get("/health/ready")
def health_ready(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "status": "ready" if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": request_id,
    }
    if not ok:
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
