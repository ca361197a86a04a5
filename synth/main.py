import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from synth.core.config import settings, validate_config
from synth.core.database import create_all_tables
from synth.core.errors import register_error_handlers
from synth.core.logging import configure_logging
from synth.core.middleware.ratelimit import RateLimitMiddleware
from synth.core.middleware.request_id import RequestIdMiddleware
from synth.core.ratelimit import build_rate_limit_config
from synth.api import billing, entitlements, health, integrations, workflows


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("synth")
    logger.info("Starting Synth backend...")
    app.state.startup_time = time.time()
    if settings.ENV.lower() != "production":
        create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping Synth backend...")


def create_app() -> FastAPI:
    configure_logging(settings.ENV)
    validate_config(strict=settings.CONFIG_STRICT)

    app = FastAPI(title="Synth - Backend", lifespan=lifespan)

    # Outermost last: request id wraps rate limiting
    app.add_middleware(RateLimitMiddleware, config=build_rate_limit_config(settings))
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.BASE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(health.root_router)
    app.include_router(entitlements.router)
    app.include_router(workflows.router)
    app.include_router(integrations.router)
    app.include_router(billing.router, prefix="/api")
    return app


app = create_app()
