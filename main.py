import uvicorn
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from mergegate.api.webhook import router as webhook_router
from mergegate.api.status import router as status_router
from mergegate.api.runs import router as runs_router
from mergegate.core.config import LOG_DIR, LOG_LEVEL
from mergegate.services.pipeline_service import PipelineService, build_pipeline_service
from mergegate.utils.logging_config import setup_logging

logger = logging.getLogger("main")


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info("Incoming: %s %s from %s", request.method, request.url.path, client_host)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("Request failed: %s %s - Error: %s", request.method, request.url.path, e)
            raise
        process_time = (time.time() - start_time) * 1000
        logger.info(
            "Outgoing: %s %s - Status: %d - Time: %.2fms",
            request.method, request.url.path, response.status_code, process_time,
        )
        return response


def create_app(service: Optional[PipelineService] = None) -> FastAPI:
    """
    Build the API. With no `service`, the pipeline is built from the
    environment on startup; tests pass a prepared one.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(level=getattr(logging, LOG_LEVEL, logging.INFO), log_dir=LOG_DIR)
        if getattr(app.state, "pipeline", None) is None:
            app.state.pipeline = build_pipeline_service()
        yield
        # Executing runs are never cancelled: let them reach a terminal state
        logger.info("Shutting down, waiting for in-flight runs...")
        await app.state.pipeline.listener.wait_idle()

    app = FastAPI(title="mergegate: gated promotion pipeline", lifespan=lifespan)
    app.state.pipeline = service
    app.add_middleware(LoggingMiddleware)

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    app.include_router(webhook_router)
    app.include_router(status_router, tags=["Status"])
    app.include_router(runs_router)
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000)
