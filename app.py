# User value: This file serves the document pipeline status API with consistent errors and request tracing.
# app.py
import os
import logging
import time

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from utils.json_logging import configure_json_logging
from utils.metrics import incr, observe_ms

# Load env before importing modules that read os.getenv at import time.
load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))


def configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    configure_json_logging(service="doc-pipeline-status-api", level=getattr(logging, level_name, logging.INFO))


configure_logging()
logger = logging.getLogger("api.error")
from errors import TrackerError
from startup_env import validate_startup_env
from utils.request_id import REQUEST_ID_HEADER, bound_request_id, get_request_id, request_id_from_headers

validate_startup_env()

from routes.contract import router as contract_router
from routes.health import router as health_router
from routes.jobs import router as jobs_router
from routes.maintenance import router as maintenance_router
from routes.metrics import router as metrics_router
from routes.status import router as status_router

app = FastAPI(title="Document Pipeline Status API")

# Generic codes for HTTP errors raised outside the tracker (routing, disabled endpoints).
_HTTP_ERROR_CODES = {
    400: "INVALID_REQUEST",
    404: "RESOURCE_NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "STATE_CONFLICT",
    503: "SERVICE_UNAVAILABLE",
}


def _route_template(request: Request) -> str:
    # Route template, not the raw path, so counters stay bounded per document.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


@app.middleware("http")
# User value: tags every request so one stage report can be traced through logs and error bodies.
async def request_id_middleware(request: Request, call_next):
    started = time.perf_counter()
    status_code = 500
    with bound_request_id(request_id_from_headers(request.headers)) as request_id:
        try:
            response = await call_next(request)
            status_code = int(getattr(response, "status_code", 500))
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            labels = {
                "method": request.method.upper(),
                "path": _route_template(request),
                "status_class": f"{status_code // 100}xx",
            }
            incr("api_http_requests_total", status_code=status_code, **labels)
            observe_ms("api_http_request_latency_ms", (time.perf_counter() - started) * 1000.0, **labels)


def _extract_error_message(detail) -> str:
    if isinstance(detail, dict):
        return str(detail.get("error_message") or detail.get("message") or detail.get("detail") or detail)
    if isinstance(detail, list):
        return "; ".join(str(x) for x in detail)
    return str(detail)


def _to_error_code(status_code: int, detail) -> str:
    if isinstance(detail, dict) and detail.get("error_code"):
        return str(detail.get("error_code")).strip().upper()
    return _HTTP_ERROR_CODES.get(status_code, f"HTTP_{status_code}")


# User value: every failure uses one envelope so clients handle errors in one place.
def _error_body(*, request: Request, status_code: int, detail, error_message: str | None = None) -> dict:
    return {
        "error_code": _to_error_code(status_code, detail),
        "error_message": error_message or _extract_error_message(detail),
        "detail": detail,
        "path": request.url.path,
        "request_id": get_request_id() or request_id_from_headers(request.headers),
    }


def _error_response(request: Request, status_code: int, body: dict, *, event: str = "request_failed") -> JSONResponse:
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "%s status=%s path=%s request_id=%s error_code=%s error_message=%s",
        event,
        status_code,
        request.url.path,
        body["request_id"],
        body["error_code"],
        body["error_message"],
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = _error_body(request=request, status_code=422, detail=exc.errors(), error_message="Request validation failed")
    body["error_code"] = "VALIDATION_ERROR"
    return _error_response(request, 422, body, event="request_failed_validation")


@app.exception_handler(TrackerError)
# User value: turns pipeline rule violations into clear 4xx/5xx answers instead of generic failures.
async def tracker_exception_handler(request: Request, exc: TrackerError):
    body = _error_body(request=request, status_code=exc.http_status, detail=exc.to_detail())
    return _error_response(request, exc.http_status, body, event="request_failed_tracker")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = _error_body(request=request, status_code=exc.status_code, detail=exc.detail)
    return _error_response(request, exc.status_code, body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "request_failed_unhandled path=%s request_id=%s error=%s: %s",
        request.url.path,
        get_request_id() or "",
        exc.__class__.__name__,
        exc,
    )
    body = _error_body(
        request=request,
        status_code=500,
        detail="Unhandled server exception",
        error_message="Internal server error",
    )
    body["error_code"] = "INTERNAL_SERVER_ERROR"
    return JSONResponse(status_code=500, content=body)


def _parse_csv_env(name: str) -> list[str]:
    values = [x.strip() for x in os.getenv(name, "").split(",") if x.strip()]
    return list(dict.fromkeys(values))


def _install_cors(target: FastAPI) -> None:
    origins = _parse_csv_env("CORS_ALLOW_ORIGINS")
    origin_regex = (os.getenv("CORS_ALLOW_ORIGIN_REGEX") or "").strip() or None
    logger.info("cors_configured allow_origins=%s allow_origin_regex=%s", origins, origin_regex or "")
    # CORS stays off unless a dashboard origin is configured.
    if not origins and not origin_regex:
        return
    target.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )


_install_cors(app)

for router in (health_router, contract_router, jobs_router, status_router, metrics_router, maintenance_router):
    app.include_router(router)
