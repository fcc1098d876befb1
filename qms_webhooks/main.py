import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from qms_webhooks.api.v1.router import router as v1_router
from qms_webhooks.core.config import settings
from qms_webhooks.core.db import SessionLocal
from qms_webhooks.core.telemetry import setup_telemetry
from qms_webhooks.services.runtime import WebhookRuntime, build_runtime


log = logging.getLogger(__name__)


def install_runtime(app: FastAPI, runtime: WebhookRuntime) -> None:
    app.state.runtime = runtime
    app.state.executor = runtime.executor
    app.state.dispatcher = runtime.dispatcher
    app.state.retry_scheduler = runtime.retry_scheduler
    app.state.clock = runtime.clock


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=logging.INFO)

    runtime = build_runtime(SessionLocal)
    install_runtime(app, runtime)
    if settings.scheduler_enabled:
        runtime.retry_scheduler.start()
    else:
        log.info("retry scheduler disabled in this process")

    try:
        yield
    finally:
        await runtime.aclose()


app = FastAPI(title="QMS Webhooks API", version="0.1.0", lifespan=lifespan)

setup_telemetry(app)
app.include_router(v1_router)
