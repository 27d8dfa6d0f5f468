"""Application factory for the FastAPI app.

Builds every collaborator once from settings, wires them into the pipeline,
and exposes them on ``app.state`` for the routes. Startup fails fast on
misconfiguration (unknown drivers, missing keys, plugin load errors).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from tablegate.adapters.cache import create_cache_storage
from tablegate.adapters.data import AbstractTableDataSource, InMemoryTableDataSource
from tablegate.api.routes import api_router, health_router
from tablegate.core.auth import build_authenticator
from tablegate.core.config import Settings, settings as default_settings
from tablegate.core.exception_handlers import setup_exception_handlers
from tablegate.core.logging import configure_logging
from tablegate.core.middleware import request_id_middleware
from tablegate.core.rate_limit import SlidingWindowRateLimiter, build_rate_limiter
from tablegate.core.rbac import Rbac
from tablegate.plugins import PluginFactory, PluginManager, select_factories
from tablegate.schemas.actions import Action
from tablegate.services.actions import build_action_registry
from tablegate.services.cache_manager import CacheManager
from tablegate.services.pipeline import Pipeline
from tablegate.services.request_logger import RequestLogger

logger = logging.getLogger(__name__)


async def _cleanup_loop(limiter: SlidingWindowRateLimiter, interval: int, max_age: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(limiter.cleanup, max_age)
        except Exception as exc:
            logger.warning("rate_limit.cleanup_failed", extra={"error_type": type(exc).__name__})


def _lifespan(cfg: Settings, limiter: SlidingWindowRateLimiter):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task: asyncio.Task | None = None
        interval = cfg.rate_limit.cleanup_interval_seconds
        if limiter.enabled and interval > 0:
            task = asyncio.create_task(
                _cleanup_loop(limiter, interval, cfg.rate_limit.cleanup_max_age_seconds)
            )
        logger.info("app.started", extra={"app_env": cfg.app_env})
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.info("app.stopped")

    return lifespan


def create_app(
    app_settings: Settings | None = None,
    *,
    data_source: AbstractTableDataSource | None = None,
    plugin_registry: Mapping[str, PluginFactory] | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use (defaults to the environment-loaded ones).
        data_source: Table backend; an empty in-memory source when omitted.
        plugin_registry: Name -> factory map (defaults to ``PLUGIN_REGISTRY``).
        clock: Time source for rate limiting, caching and token expiry.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    plugin_manager = PluginManager(
        select_factories(cfg.plugins.enabled, dict(plugin_registry) if plugin_registry is not None else None),
        reserved_actions={action.value for action in Action},
    )
    plugin_manager.load_all()
    if cfg.plugins.install_on_startup:
        plugin_manager.install_all()

    rbac = Rbac(cfg.auth.roles).with_grants(plugin_manager.permissions)
    authenticator = build_authenticator(cfg.auth, clock=clock)
    rate_limiter = build_rate_limiter(cfg.rate_limit, clock=clock)
    cache_manager = CacheManager(
        create_cache_storage(cfg.cache, clock=clock),
        enabled=cfg.cache.enabled,
        default_ttl=cfg.cache.ttl,
        per_table_ttl=cfg.cache.per_table,
        exclude_tables=cfg.cache.exclude_tables,
    )
    actions = build_action_registry(
        data_source if data_source is not None else InMemoryTableDataSource(),
        authenticator,
        plugin_manager.custom_actions,
    )

    pipeline = Pipeline(
        rate_limiter=rate_limiter,
        authenticator=authenticator,
        rbac=rbac,
        cache=cache_manager,
        actions=actions,
        hooks=plugin_manager.hooks,
        request_logger=RequestLogger(),
        auth_enabled=cfg.auth.enabled,
        cors=cfg.cors,
        vary_cache_by_api_key=cfg.cache.vary_by_api_key,
    )

    app = FastAPI(
        title="tablegate",
        description=(
            "Exposes relational tables as authenticated, rate-limited, cached "
            "REST endpoints at /api?action=<action>&table=<table>."
        ),
        version="0.1.0",
        lifespan=_lifespan(cfg, rate_limiter),
    )

    app.state.settings = cfg
    app.state.request_id_header = cfg.log.request_id_header
    app.state.auth_enabled = cfg.auth.enabled
    app.state.authenticator = authenticator
    app.state.rate_limiter = rate_limiter
    app.state.cache_manager = cache_manager
    app.state.plugin_manager = plugin_manager
    app.state.rbac = rbac
    app.state.pipeline = pipeline

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(api_router)
    app.include_router(health_router)

    return app
