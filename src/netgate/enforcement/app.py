"""FastAPI application for NetGate access enforcement.

This is the main entry point for the enforcement API server:
    uvicorn src.netgate.enforcement.app:app --host 0.0.0.0 --port 8000
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..api.exceptions import NetGateError
from .api.dependencies import close_container, init_container, start_sweeper
from .api.router import billing_router, router

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Build the container (database pool, SSH executor, M-Pesa
      client), then start the background sweep
    - Shutdown: Stop the sweep (in-flight reconciliations finish), then
      close the container
    """
    logger.info("Starting NetGate Enforcement API...")

    try:
        await init_container()
    except Exception as e:
        logger.error(f"Failed to initialize enforcement container: {e}")
        raise

    start_sweeper()

    yield

    logger.info("Shutting down NetGate Enforcement API...")
    await close_container()


app = FastAPI(
    title="NetGate Access Enforcement API",
    description="""
    Keeps per-subscriber firewall rules on the network gateway in line with
    each subscriber's paid entitlement window.

    ## Triggers

    - **Mutation hooks**: reconcile a subscriber right after its record changes
    - **Sweep**: periodic reconciliation of every subscriber
    - **M-Pesa callback**: extend the window after payment, then reconcile
    """,
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-API-Key"],
)

app.include_router(router)
app.include_router(billing_router)


@app.exception_handler(NetGateError)
async def netgate_error_handler(request: Request, exc: NetGateError):
    logger.error(f"Unhandled {exc.__class__.__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503 if exc.recoverable else 500,
        content={"detail": exc.message, "code": exc.code},
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "NetGate Access Enforcement API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/enforcement/health",
    }


@app.get("/health")
async def health():
    """Global health check."""
    return {"status": "healthy"}
