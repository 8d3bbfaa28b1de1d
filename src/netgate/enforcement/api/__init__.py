"""API layer - FastAPI routers for access enforcement and billing."""

from .router import billing_router, router

__all__ = ["router", "billing_router"]
