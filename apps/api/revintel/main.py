from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from revintel.api.routes import router as api_router
from revintel.core.config import get_settings
from revintel.logging import configure_logging
from revintel.middleware.correlation_id import CorrelationIdMiddleware
from revintel.middleware.request_logging import RequestLoggingMiddleware
from revintel.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("revintel.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("system.started", extra={"operation": "startup", "period": settings.ri_default_period})
    yield
    logger.info("system.stopped", extra={"operation": "shutdown"})


app = FastAPI(title="Revenue Intelligence API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("revintel-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
