"""Domain calls against the forum, expressed through the request engine.

The front-end re-labels forum objects: categories are hubs, topics are bytes
and posts are comments. This module owns those mappings and the identity
check whose classification drives the auth state machine.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from feedcore.core.errors import ErrorKind
from feedcore.schemas.content import Byte, Comment, Hub, Notification, SearchResults
from feedcore.schemas.request import RequestOptions, RequestResult
from feedcore.schemas.session import IdentityOutcome
from feedcore.schemas.user import AppUser, StoredCredential
from feedcore.services.request_engine import SESSION_ENDPOINT, RequestEngine
from feedcore.utils.input_validators import validate_username

logger = logging.getLogger(__name__)

REVOKE_ENDPOINT = "/user-api-key/revoke"

AVATAR_SIZE = 120

LIKE_ACTION_TYPE_ID = 2

# Keys that only appear on the whole session/profile payload, never on a user.
_FULL_RESPONSE_MARKERS = ("user_badges", "badges", "badge_types", "users")


def classify_identity_result(result: RequestResult) -> IdentityOutcome:
    """Decide what an identity check means for the stored credential.

    - success: the credential is valid and the user is confirmed
    - no active session: keep the credential, drop the user snapshot
    - 401/403: the server rejected the credential
    - anything else: the server could not answer; leave storage alone
    """
    if result.success:
        return IdentityOutcome.CONFIRMED
    if result.error_kind is ErrorKind.NO_SESSION:
        return IdentityOutcome.NO_SESSION
    if result.error_kind is not None and result.error_kind.rejects_credential:
        return IdentityOutcome.CREDENTIAL_REJECTED
    return IdentityOutcome.UNAVAILABLE


def unwrap_user_payload(payload: Any) -> dict[str, Any] | None:
    """Find the user object inside an identity or profile response.

    The user may sit under ``current_user``, under ``user`` or be the payload
    itself. A whole response object (badges, side-loaded users) is unwrapped
    one more level.
    """
    if not isinstance(payload, dict):
        return None

    user = payload.get("current_user") or payload.get("user") or payload
    if isinstance(user, dict) and any(marker in user for marker in _FULL_RESPONSE_MARKERS):
        user = user.get("user") or user.get("current_user")

    if not isinstance(user, dict) or not (user.get("id") or user.get("username")):
        return None
    return user


def avatar_url(base_url: str, raw_user: dict[str, Any]) -> str:
    template = raw_user.get("avatar_template")
    if template:
        url = template.replace("{size}", str(AVATAR_SIZE))
        if url.startswith("//"):
            return f"https:{url}"
        if url.startswith(("http://", "https://")):
            return url
        return f"{base_url}{url if url.startswith('/') else '/' + url}"

    avatar = raw_user.get("avatar") or ""
    if not avatar or avatar.startswith(("http://", "https://")):
        return avatar
    return f"{base_url}{avatar if avatar.startswith('/') else '/' + avatar}"


def _joined_date(created_at: str | None) -> str:
    if not created_at:
        return "Unknown"
    try:
        created = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return "Unknown"
    return f"Joined {created.strftime('%B %Y')}"


def map_user_to_app_user(base_url: str, raw_user: dict[str, Any] | None) -> AppUser:
    """Normalize a raw forum user; missing data yields the unknown-user placeholder."""
    if not raw_user or not (raw_user.get("id") or raw_user.get("username")):
        return AppUser(id="0", username="unknown", display_name="Unknown User")

    username = raw_user.get("username") or "unknown"
    return AppUser(
        id=str(raw_user.get("id") or 0),
        username=username,
        display_name=raw_user.get("name") or raw_user.get("username") or "Unknown User",
        email=raw_user.get("email") or "",
        avatar_url=avatar_url(base_url, raw_user),
        bio=raw_user.get("bio_raw") or raw_user.get("bio") or "",
        bytes_count=raw_user.get("topic_count") or 0,
        comments_count=raw_user.get("post_count") or 0,
        joined_date=_joined_date(raw_user.get("created_at")),
    )


def map_category_to_hub(category: dict[str, Any]) -> Hub:
    color = category.get("color")
    text_color = category.get("text_color")
    return Hub(
        id=category["id"],
        name=category["name"],
        slug=category.get("slug") or "-".join(category["name"].lower().split()),
        description=category.get("description") or "",
        color=f"#{color}" if color else "",
        text_color=f"#{text_color}" if text_color else "#000000",
        parent_id=category.get("parent_category_id"),
        topics_count=category.get("topic_count") or 0,
        posts_count=category.get("post_count") or 0,
    )


def _topic_author(topic: dict[str, Any], users_by_id: dict[int, dict[str, Any]]) -> dict[str, Any] | None:
    """Original poster: created_by, then the first poster, then the topic's own fields."""
    created_by = (topic.get("details") or {}).get("created_by")
    if created_by:
        return created_by

    for poster in topic.get("posters") or []:
        if poster.get("user"):
            return poster["user"]
        if poster.get("user_id") in users_by_id:
            return users_by_id[poster["user_id"]]

    if topic.get("username") or topic.get("user_id"):
        return {
            "id": topic.get("user_id") or 0,
            "username": topic.get("username") or "unknown",
            "name": topic.get("name") or topic.get("username"),
            "avatar_template": topic.get("avatar_template") or "",
        }
    return topic.get("last_poster")


def map_topic_to_byte(
    base_url: str,
    topic: dict[str, Any],
    users_by_id: dict[int, dict[str, Any]] | None = None,
) -> Byte:
    """Map a topic summary (feed) or a full topic (with post stream) to a byte."""
    posts = (topic.get("post_stream") or {}).get("posts") or []
    details = topic.get("details") or {}
    if posts:
        content = posts[0].get("cooked") or ""
    else:
        content = topic.get("excerpt") or ""

    liked = bool(topic.get("liked")) or any(
        action.get("id") == LIKE_ACTION_TYPE_ID and action.get("acted")
        for action in details.get("actions_summary") or []
    )

    return Byte(
        id=topic["id"],
        title=topic.get("title") or "",
        excerpt=topic.get("excerpt") or "",
        content=content,
        hub_id=topic.get("category_id"),
        author=map_user_to_app_user(base_url, _topic_author(topic, users_by_id or {})),
        comment_count=max(0, (topic.get("posts_count") or 1) - 1),
        like_count=topic.get("like_count") or 0,
        view_count=topic.get("views") or 0,
        is_pinned=bool(topic.get("pinned")),
        is_locked=bool(topic.get("closed")),
        is_liked=liked,
        is_bookmarked=bool(details.get("bookmarked")),
        tags=[tag if isinstance(tag, str) else tag.get("name", "") for tag in topic.get("tags") or []],
        created_at=topic.get("created_at") or "",
        last_activity=topic.get("last_posted_at") or "",
    )


def map_post_to_comment(base_url: str, post: dict[str, Any]) -> Comment:
    # Posts embed the author flat rather than under a nested user object.
    raw_author = post.get("user") or {
        "id": post.get("user_id"),
        "username": post.get("username"),
        "name": post.get("name"),
        "avatar_template": post.get("avatar_template"),
    }
    return Comment(
        id=post["id"],
        byte_id=post.get("topic_id") or 0,
        post_number=post.get("post_number") or 1,
        content=post.get("cooked") or "",
        raw_content=post.get("raw") or "",
        author=map_user_to_app_user(base_url, raw_author),
        reply_to_post_number=post.get("reply_to_post_number"),
        like_count=post.get("like_count") or 0,
        is_liked=bool(post.get("liked")),
        created_at=post.get("created_at") or "",
        updated_at=post.get("updated_at") or post.get("created_at") or "",
    )


def map_notification(item: dict[str, Any]) -> Notification:
    data = item.get("data") or {}
    return Notification(
        id=item["id"],
        notification_type=item.get("notification_type") or 0,
        read=bool(item.get("read")),
        high_priority=bool(item.get("high_priority")),
        byte_id=item.get("topic_id"),
        post_number=item.get("post_number"),
        title=item.get("fancy_title") or data.get("topic_title") or "",
        slug=item.get("slug") or "",
        actor_username=data.get("display_username") or data.get("original_username") or "",
        created_at=item.get("created_at") or "",
    )


def map_search_results(base_url: str, payload: dict[str, Any]) -> SearchResults:
    """Map a search response.

    Search topics carry no posters, so each byte takes its author and excerpt
    from the matching opening-post hit when there is one.
    """
    posts = payload.get("posts") or []
    opening_posts = {post.get("topic_id"): post for post in posts if post.get("post_number") == 1}
    users_by_id = {user["id"]: user for user in payload.get("users") or [] if "id" in user}

    bytes_found = []
    for topic in payload.get("topics") or []:
        post = opening_posts.get(topic.get("id")) or {}
        merged = {
            "user_id": post.get("user_id"),
            "username": post.get("username"),
            "name": post.get("name"),
            "avatar_template": post.get("avatar_template"),
            "excerpt": post.get("blurb"),
            **{key: value for key, value in topic.items() if value is not None},
        }
        bytes_found.append(map_topic_to_byte(base_url, merged, users_by_id))

    return SearchResults(
        bytes=bytes_found,
        comments=[
            map_post_to_comment(base_url, {**post, "cooked": post.get("cooked") or post.get("blurb")})
            for post in posts
            if post.get("post_number") != 1
        ],
        users=[map_user_to_app_user(base_url, user) for user in payload.get("users") or []],
        hubs=[map_category_to_hub(category) for category in payload.get("categories") or []],
    )


def _mapping_failure(kind: str, exc: Exception, status: int | None) -> RequestResult:
    logger.error("forum.mapping_failed", extra={"entity": kind, "error_type": type(exc).__name__})
    return RequestResult.fail(ErrorKind.UNKNOWN, f"Unexpected {kind} data in API response", status=status)


class ForumApi:
    """Typed forum operations on top of ``RequestEngine``.

    Results keep the engine's ``RequestResult`` envelope; on success ``data``
    holds the mapped models instead of the raw payload.
    """

    def __init__(self, engine: RequestEngine) -> None:
        self.engine = engine

    @property
    def base_url(self) -> str:
        return self.engine.base_url

    async def get_current_user(self, credential: StoredCredential | None = None) -> RequestResult:
        """Confirm identity with the server.

        Always bypasses the response cache. When ``credential`` is given it is
        used instead of the stored one, so a sign-in can be confirmed before
        anything is persisted.

        Returns:
            RequestResult: ``data`` is an ``AppUser`` on success.
        """
        headers = credential.auth_headers() if credential else {}
        result = await self.engine.request(
            SESSION_ENDPOINT, RequestOptions(headers=headers, use_cache=False)
        )
        if not result.success:
            return result

        raw_user = unwrap_user_payload(result.data)
        if raw_user is None:
            logger.error(
                "forum.identity_invalid_payload",
                extra={
                    "response_keys": sorted(result.data) if isinstance(result.data, dict) else [],
                },
            )
            return RequestResult.fail(
                ErrorKind.UNKNOWN,
                "Invalid user data structure in API response",
                status=result.status,
                attempts=result.attempts,
            )

        user = map_user_to_app_user(self.base_url, raw_user)
        return RequestResult.ok(user, status=result.status, attempts=result.attempts)

    async def revoke_api_key(self) -> RequestResult:
        """Ask the server to revoke the stored key. Single attempt."""
        return await self.engine.request(
            REVOKE_ENDPOINT, RequestOptions(method="POST", use_cache=False), max_retries=0
        )

    async def get_user_profile(self, username: str) -> RequestResult:
        if not validate_username(username):
            return RequestResult.fail(ErrorKind.VALIDATION, "Invalid username format")

        result = await self.engine.request(f"/u/{quote(username)}.json")
        if not result.success:
            return result

        raw_user = unwrap_user_payload(result.data)
        if raw_user is None:
            return RequestResult.fail(
                ErrorKind.UNKNOWN, "Invalid user data structure in API response", status=result.status
            )
        return RequestResult.ok(
            map_user_to_app_user(self.base_url, raw_user), status=result.status, cached=result.cached
        )

    async def get_hubs(self) -> RequestResult:
        """Top-level categories as hubs."""
        result = await self.engine.request("/categories.json")
        if not result.success:
            return result

        categories = ((result.data or {}).get("category_list") or {}).get("categories") or []
        try:
            hubs = [
                map_category_to_hub(category)
                for category in categories
                if not category.get("parent_category_id")
            ]
        except (KeyError, ValidationError) as exc:
            return _mapping_failure("category", exc, result.status)
        return RequestResult.ok(hubs, status=result.status, cached=result.cached)

    async def get_bytes(self, hub_id: int | None = None, page: int | None = None) -> RequestResult:
        """Latest topics, optionally restricted to one hub."""
        endpoint = f"/c/{hub_id}.json" if hub_id is not None else "/latest.json"
        params = {"page": page} if page else None
        result = await self.engine.request(endpoint, RequestOptions(params=params))
        if not result.success:
            return result

        data = result.data or {}
        users_by_id = {user["id"]: user for user in data.get("users") or [] if "id" in user}
        topics = (data.get("topic_list") or {}).get("topics") or []
        try:
            byte_list = [map_topic_to_byte(self.base_url, topic, users_by_id) for topic in topics]
        except (KeyError, ValidationError) as exc:
            return _mapping_failure("topic", exc, result.status)
        return RequestResult.ok(byte_list, status=result.status, cached=result.cached)

    async def get_byte(self, byte_id: int) -> RequestResult:
        result = await self.engine.request(f"/t/{int(byte_id)}.json")
        if not result.success:
            return result
        try:
            byte = map_topic_to_byte(self.base_url, result.data)
        except (KeyError, TypeError, ValidationError) as exc:
            return _mapping_failure("topic", exc, result.status)
        return RequestResult.ok(byte, status=result.status, cached=result.cached)

    async def get_comments(self, byte_id: int) -> RequestResult:
        """Replies on a byte; the first post is the byte itself and is skipped."""
        result = await self.engine.request(f"/t/{int(byte_id)}.json")
        if not result.success:
            return result

        posts = ((result.data or {}).get("post_stream") or {}).get("posts") or []
        try:
            comments = [
                map_post_to_comment(self.base_url, post)
                for post in posts
                if post.get("post_number") != 1
            ]
        except (KeyError, ValidationError) as exc:
            return _mapping_failure("post", exc, result.status)
        return RequestResult.ok(comments, status=result.status, cached=result.cached)

    async def create_comment(
        self,
        byte_id: int,
        content: str,
        reply_to_post_number: int | None = None,
    ) -> RequestResult:
        if not content or not content.strip() or not byte_id:
            return RequestResult.fail(ErrorKind.VALIDATION, "Content and byte ID are required")

        body: dict[str, Any] = {"raw": content, "topic_id": int(byte_id)}
        if reply_to_post_number is not None:
            body["reply_to_post_number"] = reply_to_post_number

        result = await self.engine.request("/posts.json", RequestOptions(method="POST", body=body))
        if not result.success:
            return result

        # The cached topic no longer lists every reply.
        self.engine.invalidate(f"/t/{int(byte_id)}.json")
        try:
            comment = map_post_to_comment(self.base_url, result.data)
        except (KeyError, TypeError, ValidationError) as exc:
            return _mapping_failure("post", exc, result.status)
        return RequestResult.ok(comment, status=result.status, attempts=result.attempts)

    async def like_comment(self, comment_id: int, byte_id: int | None = None) -> RequestResult:
        result = await self.engine.request(
            "/post_actions.json",
            RequestOptions(
                method="POST",
                body={"id": int(comment_id), "post_action_type_id": LIKE_ACTION_TYPE_ID, "flag_topic": False},
            ),
        )
        if result.success and byte_id is not None:
            self.engine.invalidate(f"/t/{int(byte_id)}.json")
        return result

    async def unlike_comment(self, comment_id: int, byte_id: int | None = None) -> RequestResult:
        result = await self.engine.request(
            f"/post_actions/{int(comment_id)}.json",
            RequestOptions(method="DELETE", params={"post_action_type_id": LIKE_ACTION_TYPE_ID}),
        )
        if result.success and byte_id is not None:
            self.engine.invalidate(f"/t/{int(byte_id)}.json")
        return result

    async def get_hub(self, hub_id: int) -> RequestResult:
        result = await self.engine.request(f"/c/{int(hub_id)}/show.json")
        if not result.success:
            return result

        category = (result.data or {}).get("category")
        if not category:
            return RequestResult.fail(ErrorKind.NOT_FOUND, "Hub not found", status=result.status)
        try:
            hub = map_category_to_hub(category)
        except (KeyError, ValidationError) as exc:
            return _mapping_failure("category", exc, result.status)
        return RequestResult.ok(hub, status=result.status, cached=result.cached)

    async def create_byte(self, title: str, content: str, hub_id: int) -> RequestResult:
        """Open a new topic in a hub and return it as a byte.

        The created topic is fetched back so the result carries the same
        shape as ``get_byte``.
        """
        if not title or not title.strip() or not content or not content.strip() or not hub_id:
            return RequestResult.fail(ErrorKind.VALIDATION, "Title, content and hub ID are required")

        result = await self.engine.request(
            "/posts.json",
            RequestOptions(
                method="POST",
                body={"title": title, "raw": content, "category": int(hub_id), "archetype": "regular"},
            ),
        )
        if not result.success:
            return result

        byte_id = (result.data or {}).get("topic_id")
        if not byte_id:
            logger.error("forum.create_byte_missing_topic", extra={"status": result.status})
            return RequestResult.fail(ErrorKind.UNKNOWN, "Failed to create byte", status=result.status)

        # Feeds listing the hub are stale now.
        self.engine.invalidate("/latest.json")
        self.engine.invalidate(f"/c/{int(hub_id)}.json")
        return await self.get_byte(byte_id)

    async def toggle_bookmark(self, byte_id: int) -> RequestResult:
        """Flip the bookmark on a byte.

        Returns:
            RequestResult: ``data`` is the new bookmark state.
        """
        endpoint = f"/t/{int(byte_id)}.json"
        current = await self.engine.request(endpoint, RequestOptions(use_cache=False))
        if not current.success:
            return current

        data = current.data or {}
        bookmarked = bool((data.get("details") or {}).get("bookmarked") or data.get("bookmarked"))
        result = await self.engine.request(
            f"/t/{int(byte_id)}/bookmark.json",
            RequestOptions(method="DELETE" if bookmarked else "PUT"),
        )
        if not result.success:
            return result

        self.engine.invalidate(endpoint)
        return RequestResult.ok(not bookmarked, status=result.status, attempts=result.attempts)

    async def search(
        self,
        query: str,
        *,
        kind: str = "all",
        limit: int = 30,
        order: str = "relevance",
        period: str = "all",
        hub_slug: str | None = None,
        tags: list[str] | None = None,
        author: str | None = None,
    ) -> RequestResult:
        """Full-text search; filters are folded into the query string.

        Returns:
            RequestResult: ``data`` is a ``SearchResults``.
        """
        if not query or not query.strip():
            return RequestResult.fail(ErrorKind.VALIDATION, "Search query is required")
        if author is not None and not validate_username(author):
            return RequestResult.fail(ErrorKind.VALIDATION, "Invalid username format")

        terms = [query.strip()]
        if hub_slug:
            terms.append(f"category:{hub_slug}")
        if author:
            terms.append(f"author:{author}")
        if tags:
            terms.append(f"tags:{','.join(tags)}")

        params: dict[str, Any] = {"q": " ".join(terms), "include_blurbs": "true"}
        if limit:
            params["limit"] = limit
        if kind != "all":
            params["type"] = kind
        if order != "relevance":
            params["order"] = order
        if period != "all":
            params["period"] = period

        result = await self.engine.request("/search.json", RequestOptions(params=params))
        if not result.success:
            return result
        try:
            results = map_search_results(self.base_url, result.data or {})
        except (KeyError, TypeError, ValidationError) as exc:
            return _mapping_failure("search", exc, result.status)
        return RequestResult.ok(results, status=result.status, cached=result.cached)

    async def get_notifications(self) -> RequestResult:
        result = await self.engine.request("/notifications.json")
        if not result.success:
            return result

        raw = (result.data or {}).get("notifications") or []
        try:
            notifications = [map_notification(item) for item in raw]
        except (KeyError, ValidationError) as exc:
            return _mapping_failure("notification", exc, result.status)
        return RequestResult.ok(notifications, status=result.status, cached=result.cached)

    async def mark_notifications_read(self, notification_id: int | None = None) -> RequestResult:
        """Mark one notification read, or all of them when no id is given."""
        body = {"id": int(notification_id)} if notification_id is not None else None
        result = await self.engine.request(
            "/notifications/mark-read.json", RequestOptions(method="PUT", body=body)
        )
        if result.success:
            self.engine.invalidate("/notifications.json")
        return result
