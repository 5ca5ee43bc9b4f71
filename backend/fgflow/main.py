"""FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth import ACTOR_HEADER
from .config import settings
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import direct_shop, dispatches, pricing, sales_requests, tracking

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create app
app = FastAPI(
    title="FG Dispatch Workflow",
    version="1.0.0",
    description="Backend API for finished-goods request approval and dispatch",
)

if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard).")

# CORS
cors_methods = ["GET", "POST", "PUT", "OPTIONS"]
cors_headers = ["Content-Type", ACTOR_HEADER]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)

app.add_exception_handler(DomainError, domain_error_handler)

# Include routers
app.include_router(direct_shop.router, prefix="/api/v1")
app.include_router(sales_requests.router, prefix="/api/v1")
app.include_router(dispatches.router, prefix="/api/v1")
app.include_router(pricing.router, prefix="/api/v1")
app.include_router(tracking.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
        "ledger": settings.LEDGER_BACKEND,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "FG Dispatch Workflow API",
        "version": "1.0.0",
        "docs": "/docs",
    }
