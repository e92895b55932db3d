"""FastAPI application entrypoint.

Responsibilities kept minimal:
  * App / lifespan initialization
  * Router registration
  * Cross-cutting concerns: metrics middleware & exception handlers
"""

from contextlib import asynccontextmanager
import logging
import os
import re
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
try:  # Optional OpenTelemetry
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    _otel_available = True
except ImportError:  # pragma: no cover
    _otel_available = False
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from .config import get_settings, load_dotenv_if_requested
from .logging_setup import configure_logging

load_dotenv_if_requested()
configure_logging()

from .api.auth import router as auth_router  # noqa: E402
from .api.tauri_auth import router as tauri_auth_router  # noqa: E402
from .api.oauth import router as oauth_router, signin_router as google_signin_router  # noqa: E402
from .api.calendars import sync_router, connections_router  # noqa: E402
from .api.events import router as events_router  # noqa: E402
from .api.tasks import router as tasks_router  # noqa: E402
from .api.rituals import router as rituals_router  # noqa: E402
from .api.tags import router as tags_router  # noqa: E402
from .api.users import router as users_router  # noqa: E402
from .db.session import ensure_tables  # noqa: E402
from .errors import BaseAppException, InternalServerError  # noqa: E402
from .services.state_store import backend_name, get_state_store  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - simple startup path
    """Create the schema when missing (Alembic owns it in real deployments)."""
    ensure_tables()
    yield


app = FastAPI(title="MiniOrg API", version="0.1.0", lifespan=lifespan)

# --- OpenTelemetry Tracing (optional) ---
if _otel_available and os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    resource = Resource.create({"service.name": "miniorg-backend"})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    tracer = trace.get_tracer(__name__)
else:  # pragma: no cover
    tracer = None

# --- Metrics setup ---
REQUEST_COUNT = Counter(
    "miniorg_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
REQUEST_LATENCY = Histogram(
    "miniorg_request_latency_seconds", "Latency of HTTP requests", ["method", "path"]
)

# --- CORS (web client and desktop webview) ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Register routers once ---
app.include_router(auth_router)
app.include_router(tauri_auth_router)
app.include_router(oauth_router)
app.include_router(google_signin_router)
app.include_router(sync_router)
app.include_router(connections_router)
app.include_router(events_router)
app.include_router(tasks_router)
app.include_router(rituals_router)
app.include_router(tags_router)
app.include_router(users_router)


_ID_SEGMENT = re.compile(r"/[0-9a-fA-F]{8}-[0-9a-fA-F-]{27,}")


def _path_label(path: str) -> str:
    # /tasks/<uuid> -> /tasks/:id to bound label cardinality
    return _ID_SEGMENT.sub("/:id", path)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    path_label = _path_label(request.url.path)
    method = request.method
    with REQUEST_LATENCY.labels(method=method, path=path_label).time():
        if tracer:
            with tracer.start_as_current_span(f"HTTP {method} {path_label}"):
                response: Response = await call_next(request)
        else:
            response: Response = await call_next(request)
    REQUEST_COUNT.labels(method=method, path=path_label, status=str(response.status_code)).inc()
    return response


@app.get("/metrics")
def metrics():  # pragma: no cover - external scrape
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(BaseAppException)
async def app_exception_handler(request: Request, exc: BaseAppException):
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_detail()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": {"code": "VALIDATION_ERROR", "message": "invalid request", "errors": errors}},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalServerError("unexpected error")
    return JSONResponse(status_code=error.http_status, content={"detail": error.to_detail()})


@app.get("/healthz")
async def health():
    health = {"status": "ok"}
    store = get_state_store()
    backend = backend_name(store)
    health["oauthStateBackend"] = backend
    if backend == "redis":
        try:
            health["redis"] = "up" if store.redis.ping() else "down"
        except Exception as exc:  # redis client raises its own ConnectionError family
            logger.warning("Redis ping failed: %s", exc)
            health["redis"] = "error"
    health["tracing"] = "enabled" if tracer else "disabled"
    return health
