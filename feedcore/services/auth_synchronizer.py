"""Process-wide authentication state machine.

States move UNINITIALIZED -> LOADING -> AUTHENTICATED | UNAUTHENTICATED and
AUTHENTICATED -> LOADING on refresh; nothing returns to UNINITIALIZED.

Every mutating operation runs under one ``asyncio.Lock``. Bootstrap and
refresh additionally share one in-flight task, so any number of concurrent
callers cause a single identity check. After each operation the stored record
and the in-memory session agree, or both are cleared.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import ValidationError

from feedcore.core.errors import ErrorKind, StorageAppError
from feedcore.schemas.request import RequestResult
from feedcore.schemas.session import AuthEvent, AuthResult, AuthSession, AuthStatus, IdentityOutcome
from feedcore.schemas.user import EDITABLE_PROFILE_FIELDS, AppUser, AuthRecord, StoredCredential
from feedcore.services.auth_events import AuthEventBus, Listener
from feedcore.services.credential_vault import CredentialVault
from feedcore.services.forum_api import ForumApi, classify_identity_result
from feedcore.services.request_engine import RequestEngine
from feedcore.utils.input_validators import validate_token, validate_username
from feedcore.utils.optimistic import OptimisticUpdate

logger = logging.getLogger(__name__)

AUTHORIZE_MESSAGE = "Please authorize the app to access your account"
NETWORK_MESSAGE = "Network error. Please check your connection and try again."
STORAGE_MESSAGE = "Could not access secure storage"

_SETTLED = (AuthStatus.AUTHENTICATED, AuthStatus.UNAUTHENTICATED)


def _sign_in_error(result: RequestResult) -> str:
    kind = result.error_kind
    if kind is not None and (kind.rejects_credential or kind is ErrorKind.NO_SESSION):
        return AUTHORIZE_MESSAGE
    if kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
        return NETWORK_MESSAGE
    return result.error or "Sign in failed"


class AuthSynchronizer:
    """Single source of truth for who is signed in.

    Attributes:
        vault: Persistent credential record.
        forum_api: Identity check and key revocation.
        engine: Request engine whose cache is cleared with the credential.
        events: Bus on which transitions are broadcast.
    """

    def __init__(
        self,
        vault: CredentialVault,
        forum_api: ForumApi,
        engine: RequestEngine,
        events: AuthEventBus | None = None,
    ) -> None:
        self.vault = vault
        self.forum_api = forum_api
        self.engine = engine
        self.events = events or AuthEventBus()
        self._session = AuthSession.signed_out()
        self._status = AuthStatus.UNINITIALIZED
        self._lock = asyncio.Lock()
        self._inflight: asyncio.Task | None = None

    @property
    def session(self) -> AuthSession:
        return self._session

    @property
    def status(self) -> AuthStatus:
        return self._status

    @property
    def is_busy(self) -> bool:
        return self._lock.locked() or (self._inflight is not None and not self._inflight.done())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    # Bootstrap and refresh

    async def load_stored_auth(self, force: bool = False) -> AuthSession:
        """Restore the session from storage and confirm it with the server.

        Concurrent callers share one identity check. Once settled, later calls
        return the current session without I/O unless ``force`` is set.
        """
        if self._inflight is not None and not self._inflight.done():
            await asyncio.shield(self._inflight)
            return self._session
        if not force and self._status in _SETTLED:
            return self._session

        self._inflight = asyncio.ensure_future(self._run_sync(refresh=False))
        await asyncio.shield(self._inflight)
        return self._session

    async def refresh_auth(self) -> AuthResult:
        """Re-confirm identity. A transient failure keeps the previous session."""
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)

        self._inflight = asyncio.ensure_future(self._run_sync(refresh=True))
        return await asyncio.shield(self._inflight)

    async def _run_sync(self, *, refresh: bool) -> AuthResult:
        event: AuthEvent | None = None
        async with self._lock:
            was_authenticated = self._session.is_authenticated
            previous = (self._status, self._session)
            self._begin_loading()
            try:
                result = await self._synchronize(previous)
            except StorageAppError as exc:
                logger.error("auth.storage_failed", extra={"error_code": exc.code, "refresh": refresh})
                self._settle(AuthSession.signed_out())
                result = AuthResult(success=False, error=STORAGE_MESSAGE, error_kind=ErrorKind.UNKNOWN)
            except Exception:
                logger.exception("auth.sync_failed", extra={"refresh": refresh})
                self._settle(AuthSession.signed_out())
                result = AuthResult(success=False, error="Unexpected error", error_kind=ErrorKind.UNKNOWN)

            if refresh and result.outcome is IdentityOutcome.CONFIRMED:
                event = AuthEvent.REFRESHED
            elif was_authenticated and not self._session.is_authenticated:
                event = AuthEvent.SIGNED_OUT

        if event is not None:
            self.events.emit(event)
        return result

    async def _synchronize(self, previous: tuple[AuthStatus, AuthSession]) -> AuthResult:
        """Confirm the stored credential and apply the outcome to storage and memory.

        Args:
            previous: Status and session before the call. A settled pair is
                kept when the server cannot be reached; otherwise the session
                settles UNAUTHENTICATED.
        """
        record = await self.vault.load()
        if record is None:
            self._settle(AuthSession.signed_out(), outcome=IdentityOutcome.NO_CREDENTIAL)
            return AuthResult(
                success=False,
                error=AUTHORIZE_MESSAGE,
                error_kind=ErrorKind.UNAUTHORIZED,
                outcome=IdentityOutcome.NO_CREDENTIAL,
            )

        result = await self.forum_api.get_current_user(record.credential)
        outcome = classify_identity_result(result)

        if outcome is IdentityOutcome.CONFIRMED:
            user: AppUser = result.data
            self._forget_other_user(previous[1].user, user)
            await self.vault.save(record.model_copy(update={"user": user}))
            self._settle(AuthSession.signed_in(user), outcome=outcome)
            return AuthResult(success=True, outcome=outcome)

        if outcome is IdentityOutcome.NO_SESSION:
            if record.user is not None:
                await self.vault.save(record.model_copy(update={"user": None}))
            self._settle(AuthSession.signed_out(), outcome=outcome)
        elif outcome is IdentityOutcome.CREDENTIAL_REJECTED:
            await self.vault.clear()
            self.engine.clear_cache()
            self._settle(AuthSession.signed_out(), outcome=outcome)
        elif previous[0] in _SETTLED:
            self._settle(previous[1], status=previous[0], outcome=outcome)
        else:
            self._settle(AuthSession.signed_out(), outcome=outcome)

        return AuthResult(
            success=False, error=result.error, error_kind=result.error_kind, outcome=outcome
        )

    # Explicit transitions

    async def sign_in(self, identifier: str | None = None, secret: str | None = None) -> AuthResult:
        """Confirm a credential with the server and persist it.

        Args:
            identifier: Username sent alongside a new key.
            secret: New user API key. When omitted the stored credential is
                confirmed instead.

        Returns:
            AuthResult: On failure storage is untouched and the previous
            session is restored.
        """
        if secret is not None:
            if identifier is not None and not validate_username(identifier):
                return AuthResult(
                    success=False, error="Invalid username format", error_kind=ErrorKind.VALIDATION
                )
            if not validate_token(secret):
                return AuthResult(
                    success=False, error="Invalid API key format", error_kind=ErrorKind.VALIDATION
                )

        async with self._lock:
            previous = (self._status, self._session)
            self._begin_loading()
            try:
                outcome = await self._sign_in_locked(identifier, secret)
            except StorageAppError as exc:
                logger.error("auth.sign_in_storage_failed", extra={"error_code": exc.code})
                self._restore(previous)
                return AuthResult(success=False, error=STORAGE_MESSAGE, error_kind=ErrorKind.UNKNOWN)

            if not outcome.success:
                self._restore(previous)
                return outcome

        self.events.emit(AuthEvent.SIGNED_IN)
        return outcome

    async def _sign_in_locked(self, identifier: str | None, secret: str | None) -> AuthResult:
        previous_user = self._session.user
        if secret is not None:
            credential = StoredCredential(key=secret, username=identifier)
        else:
            record = await self.vault.load()
            if record is None:
                return AuthResult(
                    success=False,
                    error=AUTHORIZE_MESSAGE,
                    error_kind=ErrorKind.UNAUTHORIZED,
                    outcome=IdentityOutcome.NO_CREDENTIAL,
                )
            credential = record.credential

        result = await self.forum_api.get_current_user(credential)
        outcome = classify_identity_result(result)
        if outcome is not IdentityOutcome.CONFIRMED:
            logger.warning(
                "auth.sign_in_failed",
                extra={
                    "outcome": outcome.value,
                    "error_kind": getattr(result.error_kind, "value", None),
                    "status": result.status,
                },
            )
            return AuthResult(
                success=False, error=_sign_in_error(result), error_kind=result.error_kind, outcome=outcome
            )

        user: AppUser = result.data
        self._forget_other_user(previous_user, user)
        if credential.username is None:
            credential = credential.model_copy(update={"username": user.username})
        await self.vault.save(AuthRecord(credential=credential, user=user))
        self._settle(AuthSession.signed_in(user), outcome=outcome)
        return AuthResult(success=True, outcome=outcome)

    async def sign_out(self) -> AuthResult:
        """Revoke the key if possible, then clear everything local.

        Local state is cleared even when revocation or storage fails.
        """
        async with self._lock:
            self._begin_loading()

            try:
                has_credential = await self.vault.has_credential()
            except StorageAppError as exc:
                logger.warning("auth.sign_out_storage_read_failed", extra={"error_code": exc.code})
                has_credential = False

            if has_credential:
                revoked = await self.forum_api.revoke_api_key()
                if not revoked.success:
                    logger.warning(
                        "auth.revoke_failed",
                        extra={
                            "status": revoked.status,
                            "error_kind": getattr(revoked.error_kind, "value", None),
                        },
                    )

            try:
                await self.vault.clear()
            except StorageAppError as exc:
                logger.error("auth.sign_out_storage_clear_failed", extra={"error_code": exc.code})

            self.engine.clear_cache()
            self._settle(AuthSession.signed_out())

        self.events.emit(AuthEvent.SIGNED_OUT)
        return AuthResult(success=True)

    async def update_profile(self, partial: dict[str, Any]) -> AuthResult:
        """Apply local profile edits optimistically and persist them.

        The new snapshot is visible immediately; if persisting fails the
        previous one is put back. The server is not consulted.
        """
        unknown = set(partial) - EDITABLE_PROFILE_FIELDS
        if unknown:
            return AuthResult(
                success=False,
                error=f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                error_kind=ErrorKind.VALIDATION,
            )

        async with self._lock:
            current = self._session.user
            if not self._session.is_authenticated or current is None:
                return AuthResult(success=False, error="Not signed in", error_kind=ErrorKind.UNAUTHORIZED)

            try:
                merged = AppUser.model_validate({**current.model_dump(), **partial})
            except ValidationError as exc:
                return AuthResult(
                    success=False,
                    error=f"Invalid profile data ({exc.error_count()} errors)",
                    error_kind=ErrorKind.VALIDATION,
                )

            async def persist() -> bool:
                try:
                    await self.vault.save_user(merged)
                except StorageAppError as exc:
                    logger.error("auth.profile_persist_failed", extra={"error_code": exc.code})
                    return False
                return True

            update = OptimisticUpdate(lambda: self._session, self._publish)
            if not await update.apply(AuthSession.signed_in(merged), persist):
                return AuthResult(
                    success=False, error="Failed to save profile changes", error_kind=ErrorKind.UNKNOWN
                )

        logger.info("auth.profile_updated", extra={"fields": sorted(partial)})
        return AuthResult(success=True)

    async def set_authenticated_user(self, user: AppUser) -> AuthResult:
        """Adopt a user confirmed by an external authorization flow.

        The credential that flow produced must already be stored.
        """
        async with self._lock:
            try:
                record = await self.vault.load()
                if record is None:
                    logger.warning("auth.set_user_without_credential")
                    return AuthResult(
                        success=False,
                        error=AUTHORIZE_MESSAGE,
                        error_kind=ErrorKind.UNAUTHORIZED,
                        outcome=IdentityOutcome.NO_CREDENTIAL,
                    )
                await self.vault.save(record.model_copy(update={"user": user}))
            except StorageAppError as exc:
                logger.error("auth.set_user_storage_failed", extra={"error_code": exc.code})
                return AuthResult(success=False, error=STORAGE_MESSAGE, error_kind=ErrorKind.UNKNOWN)

            self._forget_other_user(self._session.user, user)
            self._settle(AuthSession.signed_in(user), outcome=IdentityOutcome.CONFIRMED)

        self.events.emit(AuthEvent.SIGNED_IN)
        return AuthResult(success=True, outcome=IdentityOutcome.CONFIRMED)

    # State helpers

    def _forget_other_user(self, previous: AppUser | None, user: AppUser) -> None:
        # Cache keys are scoped by auth state, not by account
        if previous is not None and previous.id != user.id:
            logger.info("auth.account_switched", extra={"user_id": user.id})
            self.engine.clear_cache()

    def _publish(self, session: AuthSession) -> None:
        self._session = session

    def _begin_loading(self) -> None:
        self._status = AuthStatus.LOADING
        self._session = self._session.model_copy(update={"is_loading": True})

    def _restore(self, previous: tuple[AuthStatus, AuthSession]) -> None:
        status, session = previous
        if status in _SETTLED:
            self._status, self._session = status, session
        else:
            self._settle(AuthSession.signed_out())

    def _settle(
        self,
        session: AuthSession,
        *,
        status: AuthStatus | None = None,
        outcome: IdentityOutcome | None = None,
    ) -> None:
        self._session = session
        self._status = status or (
            AuthStatus.AUTHENTICATED if session.is_authenticated else AuthStatus.UNAUTHENTICATED
        )
        logger.info(
            "auth.settled",
            extra={"status": self._status.value, "outcome": outcome.value if outcome else None},
        )
