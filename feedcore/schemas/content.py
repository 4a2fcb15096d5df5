"""Feed entities: hubs (categories), bytes (topics) and comments (posts)."""

from pydantic import BaseModel, ConfigDict, Field

from feedcore.schemas.user import AppUser


class Hub(BaseModel):
    """A forum category presented as a hub."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    slug: str
    description: str = ""
    color: str = ""
    text_color: str = ""
    parent_id: int | None = None
    topics_count: int = 0
    posts_count: int = 0
    is_subscribed: bool = False


class Byte(BaseModel):
    """A forum topic presented as a byte."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    excerpt: str = ""
    content: str = ""
    hub_id: int | None = None
    author: AppUser | None = None
    comment_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    view_count: int = Field(default=0, ge=0)
    is_pinned: bool = False
    is_locked: bool = False
    is_liked: bool = False
    is_bookmarked: bool = False
    tags: list[str] = Field(default_factory=list)
    created_at: str = ""
    last_activity: str = ""


class Comment(BaseModel):
    """A forum post presented as a comment on a byte."""

    model_config = ConfigDict(frozen=True)

    id: int
    byte_id: int
    post_number: int = 1
    content: str = ""
    raw_content: str = ""
    author: AppUser | None = None
    reply_to_post_number: int | None = None
    like_count: int = Field(default=0, ge=0)
    is_liked: bool = False
    created_at: str = ""
    updated_at: str = ""


class Notification(BaseModel):
    """A forum notification for the signed-in user."""

    model_config = ConfigDict(frozen=True)

    id: int
    notification_type: int = 0
    read: bool = False
    high_priority: bool = False
    byte_id: int | None = None
    post_number: int | None = None
    title: str = ""
    slug: str = ""
    actor_username: str = ""
    created_at: str = ""


class SearchResults(BaseModel):
    """Mapped search hits across bytes, comments, users and hubs."""

    model_config = ConfigDict(frozen=True)

    bytes: list[Byte] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    users: list[AppUser] = Field(default_factory=list)
    hubs: list[Hub] = Field(default_factory=list)

    @property
    def total_results(self) -> int:
        return len(self.bytes) + len(self.comments) + len(self.users) + len(self.hubs)
