"""Main application entry point for the Payload Guard service.

This module initializes the FastAPI application, configures the request
sanitization middleware, and defines the API endpoints. Every JSON body sent
to a non-skipped path is sanitized with the default profile before it reaches
a handler; `/sanitize` exposes the engine directly.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Body, FastAPI, HTTPException, Request

# Local imports
from payload_guard.app.config import SanitizeRequest, settings
from payload_guard.app.middleware import SanitizeRequestMiddleware, status_for
from payload_guard.app.policy import registry
from payload_guard.engines.errors import SanitizationError
from payload_guard.engines.sanitizer_engine import SanitizationResult, SanitizerEngine
import payload_guard.engines.instances as services

# Setup Logger
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("payload_guard.api")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manages application lifecycle resources.

    - **Startup**: Builds the default sanitizer engine. An unknown default
      profile aborts startup.
    """
    logger.info("🚀 Payload Guard starting up...")
    services.initialize_services()

    yield

    logger.info("🛑 Payload Guard shutting down...")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    SanitizeRequestMiddleware,
    profile=settings.DEFAULT_PROFILE,
    skip_paths=settings.SKIP_PATHS,
    log_warnings=settings.LOG_WARNINGS,
)

@app.get("/health")
async def health_check():
    """Returns the operational status of the service."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc)}

@app.get("/profiles")
async def list_profiles():
    """Lists the resolvable sanitization profiles."""
    return {"profiles": registry.names, "default": settings.DEFAULT_PROFILE}

@app.post("/sanitize", response_model=SanitizationResult)
async def sanitize(request: SanitizeRequest):
    """Sanitizes an arbitrary payload and returns the result with metadata.

    Uses the shared default engine unless the request names a profile,
    overrides fields, or adds sensitive field names.

    Args:
        request (SanitizeRequest): The payload and optional policy selection.

    Returns:
        SanitizationResult: The sanitized payload and its metadata.

    Raises:
        HTTPException (400): Unknown profile, invalid overrides or filter failure.
        HTTPException (413): Payload nested too deeply.
    """
    try:
        if request.profile is None and request.overrides is None and not request.sensitive_fields:
            engine = services.sanitizer_service
        else:
            profile = registry.resolve(request.profile if request.profile is not None else settings.DEFAULT_PROFILE)
            if request.overrides:
                profile = registry.merge(profile, request.overrides)
            engine = SanitizerEngine(profile, sensitive_fields=request.sensitive_fields)

        # CPU bound -> thread
        return await asyncio.to_thread(engine.sanitize, request.payload)

    except SanitizationError as e:
        logger.warning(f"⛔ Sanitization rejected: {e}")
        raise HTTPException(status_code=status_for(e), detail=e.to_dict())

@app.post("/ingest/data")
async def ingest_data(request: Request, payload: Dict[str, Any] = Body(...)):
    """Accepts a JSON object that the middleware has already sanitized.

    Returns:
        dict: The stored preview and the sanitization metadata, if any.
    """
    metadata = getattr(request.state, "sanitization", None)
    if metadata:
        logger.info(f"🧹 Payload sanitized. Fields modified: {metadata['fields_modified']}")

    return {
        "status": "success",
        "message": "Data processed",
        "preview": payload,
        "sanitization": metadata,
    }
