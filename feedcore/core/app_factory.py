"""Composition root: builds every collaborator once and wires them together."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from feedcore.adapters.rate_limit.in_memory import InMemoryMultiWindowRateLimiter, WindowSpec
from feedcore.adapters.storage import AbstractSecureStore, create_secure_store
from feedcore.core.config import Settings, settings as default_settings
from feedcore.core.logging import configure_logging
from feedcore.services.auth_events import AuthEventBus, ReactiveReloader
from feedcore.services.auth_synchronizer import AuthSynchronizer
from feedcore.services.credential_vault import CredentialVault
from feedcore.services.forum_api import ForumApi
from feedcore.services.request_engine import RequestEngine
from feedcore.utils.simple_cache import ResponseCache

logger = logging.getLogger(__name__)


@dataclass
class FeedApp:
    """Container handed to the UI layer; there is no module-level instance."""

    settings: Settings
    engine: RequestEngine
    vault: CredentialVault
    forum: ForumApi
    events: AuthEventBus
    auth: AuthSynchronizer
    reloader: ReactiveReloader

    async def aclose(self) -> None:
        self.reloader.detach()
        await self.engine.aclose()


def create_app(
    app_settings: Settings | None = None,
    *,
    store: AbstractSecureStore | None = None,
    client: httpx.AsyncClient | None = None,
    setup_logging: bool = True,
) -> FeedApp:
    """Build the client core.

    Args:
        app_settings: Settings to use; defaults to the environment-loaded ones.
        store: Secure store override (tests); otherwise built from settings.
        client: httpx client override (tests); otherwise the engine creates one.
        setup_logging: Configure the root logger from ``settings.log``.

    Returns:
        FeedApp: Wired collaborators with the reloader attached.
    """
    cfg = app_settings or default_settings
    if setup_logging:
        configure_logging(cfg.log)

    vault = CredentialVault(store or create_secure_store(cfg.auth), cfg.auth.storage_key)

    rate_limiter = None
    if cfg.request.rate_limit_enabled:
        rate_limiter = InMemoryMultiWindowRateLimiter(
            windows=(
                WindowSpec(limit=cfg.request.rate_limit_per_minute, window_seconds=60),
                WindowSpec(limit=cfg.request.rate_limit_per_hour, window_seconds=3600),
            )
        )

    engine = RequestEngine(
        base_url=cfg.forum.base_url,
        vault=vault,
        cache=ResponseCache(
            ttl_seconds=cfg.request.cache_ttl_seconds,
            max_entries=cfg.request.cache_max_entries,
        ),
        rate_limiter=rate_limiter,
        client=client,
        timeout_seconds=cfg.forum.timeout_seconds,
        max_retries=cfg.request.max_retries,
        retry_base_delay=cfg.request.retry_base_delay_seconds,
        rate_limit_max_wait=cfg.request.rate_limit_max_wait_seconds,
        auth_header_retry_delay=cfg.request.auth_header_retry_delay_seconds,
        user_agent=cfg.forum.user_agent,
        https_only=cfg.forum.https_only,
    )

    forum = ForumApi(engine)
    events = AuthEventBus()
    auth = AuthSynchronizer(vault, forum, engine, events)
    reloader = ReactiveReloader(auth, events, debounce_seconds=cfg.auth.reload_debounce_ms / 1000)
    reloader.attach()

    logger.info(
        "app.created",
        extra={
            "app_env": cfg.app_env,
            "forum_base_url": engine.base_url,
            "storage_backend": cfg.auth.storage_backend if store is None else type(store).__name__,
            "rate_limit_enabled": cfg.request.rate_limit_enabled,
        },
    )
    return FeedApp(
        settings=cfg,
        engine=engine,
        vault=vault,
        forum=forum,
        events=events,
        auth=auth,
        reloader=reloader,
    )
