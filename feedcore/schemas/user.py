"""Pydantic schemas for the signed-in user and the persisted credential."""

from pydantic import BaseModel, ConfigDict, Field


class AppUser(BaseModel):
    """Normalized identity record derived from the forum's raw user payload.

    Instances are immutable; profile edits produce a new snapshot via
    ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., description="Forum user id as a string.")
    username: str = Field(..., description="Unique handle.")
    display_name: str = Field(..., description="Full name, falling back to the username.")
    email: str = Field(default="", description="Email when visible to the current user.")
    avatar_url: str = Field(default="", description="Absolute avatar URL (120px).")
    bio: str = Field(default="", description="Raw profile bio.")
    followers: int = Field(default=0, ge=0)
    following: int = Field(default=0, ge=0)
    bytes_count: int = Field(default=0, ge=0, description="Topics created.")
    comments_count: int = Field(default=0, ge=0, description="Posts written.")
    joined_date: str = Field(default="Unknown", description="Human-readable join month.")


# Fields a caller may change through a local profile update.
EDITABLE_PROFILE_FIELDS = frozenset(
    {"display_name", "email", "avatar_url", "bio", "followers", "following"}
)


class StoredCredential(BaseModel):
    """Opaque user API key plus the identifiers sent alongside it."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="User API key.")
    username: str | None = Field(default=None, description="Sent as Api-Username on writes.")
    client_id: str | None = Field(default=None, description="Sent as User-Api-Client-Id.")

    def auth_headers(self) -> dict[str, str]:
        headers = {"User-Api-Key": self.key}
        if self.client_id:
            headers["User-Api-Client-Id"] = self.client_id
        if self.username:
            headers["Api-Username"] = self.username
        return headers


class AuthRecord(BaseModel):
    """The single secure-storage record: credential plus last confirmed user."""

    model_config = ConfigDict(frozen=True)

    credential: StoredCredential
    user: AppUser | None = None
