from fastapi import FastAPI, Request, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from contextlib import asynccontextmanager
import asyncio
import logging
import time
import uuid

from config import CORS_ORIGINS, CORS_ORIGIN_REGEX, LOG_LEVEL, NEO4J_URI
from api_health import router as health_router
from api_nodes import router as nodes_router
from api_websocket import router as websocket_router
from db_neo4j import close_driver, get_driver
from neo4j_utils import is_tcp_reachable, neo4j_host_port
from services_broadcast import broadcaster
from models import field_errors
from services_graph import ensure_schema_initialized
from services_logging import structured_log_line
from services_mind_nodes import InvalidNodeIdError

# Configure logging
logging.basicConfig(level=LOG_LEVEL, format="%(message)s")
logger = logging.getLogger("mind_mesh")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    # Broadcasts published from worker threads are delivered on this loop
    broadcaster.bind_loop(asyncio.get_running_loop())

    neo4j_host, neo4j_port = neo4j_host_port(NEO4J_URI)
    if not is_tcp_reachable(neo4j_host, neo4j_port):
        logger.warning(f"Neo4j not reachable at {neo4j_host}:{neo4j_port}; skipping schema setup.")
    else:
        try:
            with get_driver().session() as session:
                ensure_schema_initialized(session)
            logger.info("Neo4j schema ready")
        except Exception as e:
            # Don't crash the app; requests will surface the failure
            logger.error(f"Error during Neo4j schema setup: {e}", exc_info=True)

    yield  # App runs here

    close_driver()


app = FastAPI(
    title="Mind Mesh Backend",
    description="Backend API for a collaborative mind map: nodes, connections and live updates.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-Id"],
    max_age=3600,
)

app.include_router(nodes_router)
app.include_router(websocket_router)
app.include_router(health_router)


@app.middleware("http")
async def request_observability(request: Request, call_next):
    start = time.perf_counter()
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = request_id

    response = None
    try:
        response = await call_next(request)
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            structured_log_line(
                {
                    "event": "request",
                    "request_id": request_id,
                    "route": request.url.path,
                    "method": request.method,
                    "status": getattr(response, "status_code", 500),
                    "latency_ms": latency_ms,
                }
            )
        )

    if isinstance(response, Response):
        response.headers["x-request-id"] = request_id
    return response


def _validation_response(request: Request, errors) -> JSONResponse:
    fields = field_errors(errors)
    logger.warning(
        f"Validation error on {request.method} {request.url.path}: {fields}",
        extra={"method": request.method, "path": request.url.path, "errors": fields},
    )
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": fields})


# Centralized error handling
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTP exceptions (4xx, 5xx).
    Logs the error with appropriate level and returns JSON response.
    """
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code} error on {request.method} {request.url.path}",
            extra={"status_code": exc.status_code, "method": request.method, "path": request.url.path},
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})

    logger.warning(
        f"HTTP {exc.status_code} error on {request.method} {request.url.path}: {exc.detail}",
        extra={"status_code": exc.status_code, "method": request.method, "path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are client errors (400)."""
    return _validation_response(request, exc.errors())


@app.exception_handler(ValidationError)
async def model_validation_exception_handler(request: Request, exc: ValidationError):
    """Validation done inside the service (PATCH bodies) maps the same way."""
    return _validation_response(request, exc.errors())


@app.exception_handler(InvalidNodeIdError)
async def invalid_node_id_handler(request: Request, exc: InvalidNodeIdError):
    logger.warning(f"Invalid node ID on {request.method} {request.url.path}: {exc.node_id!r}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unhandled exceptions.
    Logs full stack trace but returns sanitized error message to client.
    """
    logger.exception(
        f"Unhandled exception on {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
        },
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def read_root():
    return {"status": "ok", "message": "Mind Mesh backend is running"}
