import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env before settings are read; tests configure the environment themselves
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from movetrail import __version__  # noqa: E402
from movetrail.api import health, metrics, streaks  # noqa: E402
from movetrail.core.config import settings, validate_config  # noqa: E402
from movetrail.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from movetrail.core.logging import configure_logging  # noqa: E402
from movetrail.core.middleware.metrics import MetricsMiddleware  # noqa: E402
from movetrail.core.middleware.request_id import RequestIdMiddleware  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("movetrail")
    logger.info("Starting Movement Trail streak engine...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("movetrail").info("Stopping Movement Trail streak engine...")


app = FastAPI(title="Movement Trail - Streak Engine", version=__version__, lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8081"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(streaks.router)
app.include_router(health.root_router)
app.include_router(metrics.router)
