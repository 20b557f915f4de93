"""Root API router for v1 endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from leadflow.api.v1 import health, leads, notifications, status, webhooks


def get_api_router(prefix: str = "/api/v1") -> APIRouter:
    api_router = APIRouter(prefix=prefix)
    api_router.include_router(health.router)
    api_router.include_router(webhooks.router)
    api_router.include_router(leads.router)
    api_router.include_router(status.router)
    api_router.include_router(notifications.router)
    return api_router
