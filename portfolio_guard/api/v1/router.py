"""
API router, mounted at /api.
"""
from fastapi import APIRouter

from portfolio_guard.api.v1.endpoints import api_keys, auth, config, contact, downloads, health, turnstile

api_router = APIRouter()

# Health check endpoint (no prefix, so it's /api/health)
api_router.include_router(health.router, tags=["health"])

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(api_keys.verify_router, prefix="/admin/api-keys", tags=["api-keys"])
api_router.include_router(api_keys.router, prefix="/admin/api-keys", tags=["api-keys"])
api_router.include_router(turnstile.admin_router, prefix="/admin/turnstile", tags=["turnstile"])
api_router.include_router(config.router, prefix="/admin", tags=["config"])
api_router.include_router(turnstile.public_router, prefix="/turnstile", tags=["turnstile"])
api_router.include_router(contact.router, prefix="/contact", tags=["contact"])
api_router.include_router(downloads.router, tags=["downloads"])
