"""REST API module for the ledger core.

This module provides HTTP endpoints for:
- Account balances, journals and subscription status
- Creating, listing and cancelling invoices
- Requesting withdrawals and quoting fees
- Privacy modes and access checks for resources
- System health monitoring

Every endpoint except the root and health check takes a bearer token that
names the calling account.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    # Database and workers are managed by __main__.py
    yield
    logger.info("Shutting down API...")

# Create FastAPI app
app = FastAPI(
    title="Ledger Core API",
    description="REST API for balances, invoices, withdrawals and privacy controls",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    """Root endpoint describing the API."""
    return {
        'name': app.title,
        'version': app.version,
        'docs': app.docs_url
    }

# Import and include all routers
from .accounts import router as accounts_router
from .invoices import router as invoices_router
from .withdrawals import router as withdrawals_router
from .privacy import router as privacy_router
from .system import router as system_router

# Include all routers
app.include_router(accounts_router)
app.include_router(invoices_router)
app.include_router(withdrawals_router)
app.include_router(privacy_router)
app.include_router(system_router)
