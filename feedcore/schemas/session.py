"""Auth session state, events and operation results."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from feedcore.core.errors import ErrorKind
from feedcore.schemas.user import AppUser


class AuthStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class AuthEvent(str, Enum):
    SIGNED_IN = "auth:signed-in"
    SIGNED_OUT = "auth:signed-out"
    REFRESHED = "auth:refreshed"


class IdentityOutcome(str, Enum):
    """How an identity confirmation settled."""

    CONFIRMED = "confirmed"
    NO_CREDENTIAL = "no_credential"
    NO_SESSION = "no_session"
    CREDENTIAL_REJECTED = "credential_rejected"
    UNAVAILABLE = "unavailable"


class AuthSession(BaseModel):
    """Immutable snapshot of who is signed in."""

    model_config = ConfigDict(frozen=True)

    user: AppUser | None = None
    is_authenticated: bool = False
    is_loading: bool = False

    @classmethod
    def signed_out(cls) -> "AuthSession":
        return cls(user=None, is_authenticated=False, is_loading=False)

    @classmethod
    def signed_in(cls, user: AppUser) -> "AuthSession":
        return cls(user=user, is_authenticated=True, is_loading=False)


class AuthResult(BaseModel):
    """Outcome of an auth operation, with a message meant for the caller's UI."""

    model_config = ConfigDict(frozen=True)

    success: bool
    error: str | None = Field(default=None, description="Human-readable failure message.")
    error_kind: ErrorKind | None = None
    outcome: IdentityOutcome | None = None
