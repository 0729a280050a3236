"""Data models for the newsfeed sync client.

This module defines the core data structures used throughout the package:
- NewsItem / Category: A single news article as served by the API
- Page / PagedNews: Infinite-feed pages and their offsets
- LikeState / Bookmark: Per-viewer engagement state
- Comment / CommentPage: Moderated comments on a news item
- UserProfile: The signed-in user
- ApiError: Error information for a failed REST call
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

ErrorType = Literal["connection_error", "not_found", "unauthorized", "parse_error"]
CommentStatus = Literal["pending", "approved", "rejected"]

# Server keys that map onto NewsItem attributes; everything else lands in extra
_NEWS_FIELDS = {
    "id",
    "title",
    "createdAt",
    "Category",
    "category",
    "isPaused",
    "images",
    "documents",
    "content",
}


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp from the API.

    Args:
        value: Timestamp string (a trailing "Z" is accepted) or None

    Returns:
        datetime, or None when the value is missing or unparseable
    """
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Category:
    """News category. An empty name makes the owning item undisplayable."""

    name: str
    id: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "Category | None":
        if not isinstance(data, dict):
            return None
        return cls(name=data.get("name") or "", id=data.get("id"))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass
class NewsItem:
    """Represents a single news item.

    Attributes:
        id: Stable integer identifier
        title: Headline
        created_at: Publication timestamp
        category: Owning category (None when the server omitted it)
        is_paused: Paused items are hidden from feeds
        images: Image URLs in display order
        documents: Attached document URLs
        content: Body text / HTML
        extra: Denormalized server fields echoed back unchanged
    """

    id: int
    title: str
    created_at: datetime | None = None
    category: Category | None = None
    is_paused: bool = False
    images: list[str] = field(default_factory=list)
    documents: list[str] = field(default_factory=list)
    content: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NewsItem":
        """Build a NewsItem from an API payload.

        Args:
            data: News object as returned by the API (camelCase keys)

        Returns:
            NewsItem

        Raises:
            ValueError: If the payload is not an object or has no integer id
        """
        if not isinstance(data, dict):
            raise ValueError("news payload must be an object")

        raw_id = data.get("id")
        if raw_id is None or isinstance(raw_id, bool):
            raise ValueError("news payload has no id")
        try:
            news_id = int(raw_id)
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid news id: {raw_id!r}") from e

        category_data = data.get("Category", data.get("category"))

        return cls(
            id=news_id,
            title=data.get("title") or "",
            created_at=parse_timestamp(data.get("createdAt")),
            category=Category.from_dict(category_data),
            is_paused=bool(data.get("isPaused", False)),
            images=list(data.get("images") or []),
            documents=list(data.get("documents") or []),
            content=data.get("content") or "",
            extra={k: v for k, v in data.items() if k not in _NEWS_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the API's camelCase shape."""
        data = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "title": self.title,
                "createdAt": _format_timestamp(self.created_at),
                "Category": self.category.to_dict() if self.category else None,
                "isPaused": self.is_paused,
                "images": list(self.images),
                "documents": list(self.documents),
                "content": self.content,
            }
        )
        return data

    def merged(self, fields: dict[str, Any]) -> "NewsItem":
        """Return a copy with server-shaped fields merged on top.

        Fields absent from ``fields`` keep their current values. The id
        never changes.
        """
        updates = {k: v for k, v in fields.items() if k != "id"}
        if "category" in updates:
            updates["Category"] = updates.pop("category")

        data = self.to_dict()
        data.update(updates)
        return NewsItem.from_dict(data)

    def with_extra(self, **values: Any) -> "NewsItem":
        return replace(self, extra={**self.extra, **values})


@dataclass
class Page:
    """One page of an infinite feed.

    Attributes:
        items: News items on this page
        has_more: Whether the server has another page
        next_offset: Offset to request for the next page
    """

    items: list[NewsItem]
    has_more: bool
    next_offset: int


@dataclass
class PagedNews:
    """Cached value of an infinite feed.

    Attributes:
        pages: Loaded pages in order
        page_offsets: Offset each page was requested with
    """

    pages: list[Page] = field(default_factory=list)
    page_offsets: list[int] = field(default_factory=list)

    @property
    def items(self) -> list[NewsItem]:
        return [item for page in self.pages for item in page.items]

    @property
    def next_offset(self) -> int | None:
        """Offset of the next page, or None when the feed is exhausted."""
        if not self.pages:
            return 0
        last = self.pages[-1]
        return last.next_offset if last.has_more else None


@dataclass
class LikeState:
    """Like count and the viewer's own like for a news item."""

    news_id: int
    likes_count: int
    is_liked: bool

    @classmethod
    def from_dict(cls, news_id: int, data: dict[str, Any]) -> "LikeState":
        return cls(
            news_id=news_id,
            likes_count=max(int(data.get("likesCount") or 0), 0),
            is_liked=bool(data.get("isLiked", False)),
        )

    def toggled(self) -> "LikeState":
        """Expected state after the viewer toggles their like."""
        delta = -1 if self.is_liked else 1
        return LikeState(
            news_id=self.news_id,
            likes_count=max(self.likes_count + delta, 0),
            is_liked=not self.is_liked,
        )


@dataclass
class Bookmark:
    """A saved news item for a user."""

    news_id: int
    created_at: datetime | None = None
    news: NewsItem | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bookmark":
        news_data = data.get("News")
        news = None
        if isinstance(news_data, dict):
            try:
                news = NewsItem.from_dict(news_data)
            except ValueError:
                news = None
        raw_id = data.get("newsId", news.id if news else None)
        if raw_id is None:
            raise ValueError("bookmark payload has no newsId")
        return cls(
            news_id=int(raw_id),
            created_at=parse_timestamp(data.get("createdAt")),
            news=news,
        )


@dataclass
class CommentAuthor:
    """Author of a comment."""

    id: int | None
    first_name: str = ""
    last_name: str = ""
    role: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Comment:
    """A comment on a news item.

    Attributes:
        id: Comment identifier
        content: Comment text
        created_at: Creation timestamp
        author: Who wrote it
        status: Moderation status
    """

    id: int
    content: str
    created_at: datetime | None
    author: CommentAuthor
    status: CommentStatus

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Comment":
        user = data.get("User") or {}
        status = data.get("status", "pending")
        if status not in ("pending", "approved", "rejected"):
            status = "pending"
        return cls(
            id=int(data["id"]),
            content=data.get("content") or "",
            created_at=parse_timestamp(data.get("createdAt")),
            author=CommentAuthor(
                id=user.get("id"),
                first_name=user.get("firstName") or "",
                last_name=user.get("lastName") or "",
                role=user.get("role"),
            ),
            status=status,
        )


@dataclass
class CommentPage:
    """One page of comments and the total count on the server."""

    comments: list[Comment]
    total_count: int
    page: int = 1

    @property
    def has_more(self) -> bool:
        return self.total_count > len(self.comments)


@dataclass
class UserProfile:
    """The signed-in user."""

    id: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    role: str = ""
    faculty: str | None = None
    profile_picture: str = ""
    date_of_birth: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProfile":
        return cls(
            id=int(data["id"]),
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            email=data.get("email") or "",
            role=data.get("role") or "",
            faculty=data.get("faculty"),
            profile_picture=data.get("profilePicture") or "",
            date_of_birth=data.get("dateOfBirth") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "role": self.role,
            "faculty": self.faculty,
            "profilePicture": self.profile_picture,
            "dateOfBirth": self.date_of_birth,
        }


class ApiError(Exception):
    """Error for a failed API call.

    Attributes:
        error_type: Category of the error
        message: Human-readable error description
        status_code: HTTP status, when the server answered
    """

    def __init__(
        self, error_type: ErrorType, message: str, status_code: int | None = None
    ) -> None:
        self.error_type = error_type
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.error_type == "not_found"
