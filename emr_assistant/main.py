"""
EMR Assistant API
FastAPI application for the in-app AI chat assistant
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

from emr_assistant.routers import chat
from emr_assistant.services.config import Settings
from emr_assistant.services.knowledge_base import KnowledgeBaseStore
from emr_assistant.services.llm import LLMService
from emr_assistant.utils.logging import setup_logging

# Load settings
settings = Settings()

# Configure structured logging
setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = structlog.get_logger()

# Metrics
request_counter = Counter(
    'emr_assistant_requests_total',
    'Total number of requests',
    ['method', 'endpoint', 'status']
)
request_duration = Histogram(
    'emr_assistant_request_duration_seconds',
    'Request duration',
    ['method', 'endpoint']
)
active_connections = Gauge(
    'emr_assistant_active_connections',
    'Number of active connections'
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    logger.info("Starting EMR Assistant API",
                version=settings.API_VERSION,
                environment=settings.ENVIRONMENT)

    knowledge_store = KnowledgeBaseStore(settings.KNOWLEDGE_BASE_PATH)
    if not knowledge_store.exists():
        logger.warning("Knowledge base file not found at startup", path=settings.KNOWLEDGE_BASE_PATH)

    llm_service = LLMService(settings)

    # Setup OpenTelemetry if enabled
    if settings.OTEL_ENABLED:
        trace.set_tracer_provider(
            TracerProvider(resource=Resource.create({"service.name": settings.OTEL_SERVICE_NAME}))
        )
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_ENDPOINT,
            insecure=True
        )
        span_processor = BatchSpanProcessor(otlp_exporter)
        trace.get_tracer_provider().add_span_processor(span_processor)

        # Instrument FastAPI
        FastAPIInstrumentor.instrument_app(app)

    # Set services in app state
    app.state.settings = settings
    app.state.knowledge_store = knowledge_store
    app.state.llm_service = llm_service

    logger.info("API initialization complete", knowledge_base=settings.KNOWLEDGE_BASE_PATH, model=settings.MODEL_NAME)

    yield

    # Shutdown
    logger.info("Shutting down EMR Assistant API")

    await app.state.llm_service.close()

    logger.info("Shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="EMR Assistant API",
    description="Knowledge-base backed chat assistant for the practice management application",
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Middleware for request tracking
@app.middleware("http")
async def track_requests(request: Request, call_next):
    """Track request metrics and add request ID"""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    active_connections.inc()
    start_time = time.time()

    structlog.contextvars.bind_contextvars(request_id=request_id)

    try:
        response = await call_next(request)

        # Streamed bodies are still running here; duration covers time to headers
        duration = time.time() - start_time
        request_counter.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()
        request_duration.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=duration
        )

        return response

    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e)
        )
        request_counter.labels(
            method=request.method,
            endpoint=request.url.path,
            status=500
        ).inc()
        raise

    finally:
        active_connections.dec()
        structlog.contextvars.unbind_contextvars("request_id")

# Include routers
app.include_router(chat.router, prefix="/api/v1")

# Health check endpoints
@app.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "version": settings.API_VERSION}

@app.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness probe - knowledge file present and a model service configured"""
    checks = {
        "api": "healthy",
        "knowledge_base": "healthy" if request.app.state.knowledge_store.exists() else "missing",
        "llm": "healthy" if request.app.state.settings.LLM_URL else "unconfigured",
    }

    if all(v == "healthy" for v in checks.values()):
        return {"status": "ready", "checks": checks}

    logger.warning("Readiness check failed", checks=checks)
    return JSONResponse(
        status_code=503,
        content={"status": "not ready", "checks": checks}
    )

@app.get("/health/live")
async def liveness_check():
    """Liveness probe - checks if the application is running"""
    return {"status": "alive"}

@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "EMR Assistant API",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/docs" if settings.ENVIRONMENT == "development" else None,
        "health": "/health",
        "metrics": "/metrics"
    }

# Error handlers
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Reject malformed chat requests, listing the offending fields"""
    fields = [
        ".".join(str(part) for part in error["loc"] if part != "body")
        for error in exc.errors()
    ]
    logger.warning("Request validation failed", fields=fields, path=request.url.path)
    return JSONResponse(
        status_code=422,
        content={"error": "Validation failed", "fields": fields, "status_code": 422}
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "status_code": exc.status_code}
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "status_code": 500,
            "request_id": getattr(request.state, "request_id", None)
        }
    )

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "emr_assistant.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_config=None,  # Use structlog instead
        access_log=False,  # Handled by middleware
    )
