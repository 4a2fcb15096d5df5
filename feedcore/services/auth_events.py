"""Auth transition broadcast and the debounced reloader that reacts to it."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

from feedcore.schemas.session import AuthEvent

if TYPE_CHECKING:
    from feedcore.services.auth_synchronizer import AuthSynchronizer

logger = logging.getLogger(__name__)

Listener = Callable[[AuthEvent], None]


class AuthEventBus:
    """Synchronous fan-out of auth events to subscribed listeners.

    A failing listener is logged and does not prevent delivery to the others.
    Listeners may subscribe or unsubscribe while an event is being delivered;
    the change applies from the next emit.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener and return the function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: AuthEvent) -> None:
        logger.info(
            "auth.event", extra={"auth_event": event.value, "listeners": len(self._listeners)}
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("auth.listener_failed", extra={"auth_event": event.value})


class ReactiveReloader:
    """Reload the stored session after sign-in or refresh events.

    Events that arrive while the synchronizer is busy are ignored, a burst of
    events inside the debounce window collapses into one reload, and sign-out
    never triggers one. A reload emits at most signed-out, which is ignored
    here, so it cannot feed back into another reload.
    """

    def __init__(
        self,
        synchronizer: "AuthSynchronizer",
        bus: AuthEventBus,
        debounce_seconds: float = 0.05,
    ) -> None:
        self._synchronizer = synchronizer
        self._bus = bus
        self._debounce = debounce_seconds
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self.reload_count = 0

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._bus.subscribe(self._on_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_pending()

    async def wait_idle(self) -> None:
        """Wait for a running reload, if any, to settle."""
        if self._task is not None and not self._task.done():
            await self._task

    def _on_event(self, event: AuthEvent) -> None:
        if event is AuthEvent.SIGNED_OUT:
            self._cancel_pending()
            return
        if self._synchronizer.is_busy:
            logger.debug("auth.reload_skipped", extra={"auth_event": event.value, "reason": "busy"})
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("auth.reload_skipped", extra={"auth_event": event.value, "reason": "no_loop"})
            return

        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._debounce, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._synchronizer.is_busy:
            logger.debug("auth.reload_skipped", extra={"reason": "busy"})
            return
        self.reload_count += 1
        logger.info("auth.reload", extra={"reload_count": self.reload_count})
        self._task = asyncio.ensure_future(self._synchronizer.load_stored_auth(force=True))

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
