from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check used by load balancers and monitoring."""

    return {"status": "ok"}


@router.get("/health/details")
def health_details(request: Request) -> dict:
    """Readiness details: loaded plugins, cache statistics and auth mode.

    No secrets or identifiers are included.
    """

    state = request.app.state
    return {
        "status": "ok",
        "auth_method": state.authenticator.method if state.auth_enabled else "disabled",
        "rate_limit_enabled": state.rate_limiter.enabled,
        "plugins": state.plugin_manager.describe(),
        "cache": state.cache_manager.get_stats(),
    }
