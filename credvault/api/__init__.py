"""API routers for the credential vault."""

from fastapi import APIRouter

from credvault.api import auth, keys, session

api_router = APIRouter(prefix="/api/v1")

# OAuth consent and callback (public, protected by the state parameter)
api_router.include_router(auth.router, tags=["authorization"])

# ID token exchange (public, verified upstream)
api_router.include_router(session.router, tags=["session"])

# AI-provider keys (session token required)
api_router.include_router(keys.router, tags=["api-keys"])

__all__ = ["api_router"]
