"""
Lead Router - FastAPI Application
Main entry point with all routes configured.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from leadrouter.config import settings
from leadrouter.database import init_db
from leadrouter.core.exceptions import LeadRouterException
from leadrouter.schemas.common import ErrorResponse, HealthResponse

# Import all API routers
from leadrouter.api import (
    webhooks, pixel, leads, email_processing, mailbox, rotation, duplicates, lead_sources, people
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    await init_db()
    logger.info("Lead Router started")
    yield
    # Shutdown


app = FastAPI(
    title="Lead Router API",
    description="Lead ingestion, de-duplication and round robin routing",
    version="1.0.0",
    lifespan=lifespan
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Pixel captures come from customer websites
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LeadRouterException)
async def lead_router_exception_handler(request: Request, exc: LeadRouterException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', []))}: {error.get('msg')}" for error in errors
    )
    return JSONResponse(status_code=422, content={"error": {"code": "invalid_payload", "message": message}})


# Include all routers
ERROR_RESPONSES = {401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}}

app.include_router(webhooks.router, responses=ERROR_RESPONSES)
app.include_router(pixel.router, responses=ERROR_RESPONSES)
app.include_router(leads.router, responses=ERROR_RESPONSES)
app.include_router(email_processing.router, responses=ERROR_RESPONSES)
app.include_router(mailbox.router, responses=ERROR_RESPONSES)
app.include_router(rotation.router, responses=ERROR_RESPONSES)
app.include_router(duplicates.router, responses=ERROR_RESPONSES)
app.include_router(lead_sources.router, responses=ERROR_RESPONSES)
app.include_router(people.router, responses=ERROR_RESPONSES)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "message": "Lead Router API is running",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    """Detailed health check."""
    return HealthResponse()
