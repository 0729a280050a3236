"""REST client for the news API.

Every call is blocking and authenticated with a bearer credential.
Failures are raised as ApiError with a typed error_type; callers in
query_client and mutations convert them into result states.
"""

import logging
from typing import Any

import requests

from .config import BREAKING_NEWS_LIMIT, COMMENTS_PAGE_SIZE, PAGE_SIZE, REQUEST_TIMEOUT_SECONDS
from .filters import build_news_list, parse_news_list
from .models import (
    ApiError,
    Bookmark,
    Category,
    CommentPage,
    Comment,
    LikeState,
    NewsItem,
    Page,
    UserProfile,
)

logger = logging.getLogger(__name__)


class NewsApiClient:
    """Client for the news, bookmark, like, comment and auth endpoints.

    Attributes:
        base_url: API root, e.g. "https://news.example.edu"
        token: Bearer credential (None for anonymous calls)
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: int = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize NewsApiClient.

        Args:
            base_url: API root URL
            token: Bearer credential
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._timeout = timeout

    def with_token(self, token: str | None) -> "NewsApiClient":
        return NewsApiClient(self.base_url, token=token, timeout=self._timeout)

    # News

    def get_news_page(
        self,
        offset: int = 0,
        limit: int = PAGE_SIZE,
        category_id: int = 0,
    ) -> Page:
        """Fetch one page of the user's news feed.

        Args:
            offset: Offset of the first item
            limit: Page size
            category_id: Category filter (0 = all categories)

        Returns:
            Page with deduplicated, displayable items and next_offset = offset + limit
        """
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if category_id:
            params["categoryId"] = category_id

        data = self._request("GET", "/api/news/user", params=params) or {}
        items = build_news_list(parse_news_list(data.get("news")), context="allNews")
        return Page(
            items=items,
            has_more=bool(data.get("hasMore", False)),
            next_offset=offset + limit,
        )

    def get_breaking_news(self, limit: int = BREAKING_NEWS_LIMIT) -> list[NewsItem]:
        data = self._request("GET", "/api/news/user", params={"limit": limit}) or {}
        return build_news_list(parse_news_list(data.get("news")), context="breakingNews")

    def search_news(self, query: str) -> list[NewsItem]:
        data = self._request("GET", "/api/news/user", params={"query": query}) or {}
        return build_news_list(parse_news_list(data.get("news")), context="searchNews")

    def get_news(self, news_id: int) -> NewsItem:
        """Fetch a single news item with its content.

        Raises:
            ApiError: not_found when the item does not exist
        """
        data = self._request("GET", f"/api/news/news/{news_id}")
        try:
            return NewsItem.from_dict(data)
        except ValueError as e:
            raise ApiError("parse_error", str(e)) from e

    def get_categories(self) -> list[Category]:
        data = self._request("GET", "/api/categories") or []
        categories = [Category.from_dict(entry) for entry in data]
        return [c for c in categories if c is not None and c.name]

    # Bookmarks

    def get_bookmarks(self, user_id: int) -> list[Bookmark]:
        """Fetch a user's bookmarks with the embedded news items."""
        data = self._request("GET", f"/api/bookmarks/{user_id}") or []
        bookmarks = []
        for entry in data:
            try:
                bookmarks.append(Bookmark.from_dict(entry))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed bookmark: %s", e)
        return bookmarks

    def add_bookmark(self, news_id: int) -> dict[str, Any]:
        return self._request("POST", "/api/bookmarks", json={"newsId": news_id}) or {}

    def remove_bookmark(self, news_id: int) -> None:
        self._request("DELETE", f"/api/bookmarks/{news_id}")

    # Likes

    def get_likes(self, news_id: int) -> LikeState:
        data = self._request("GET", f"/api/likes/{news_id}") or {}
        return LikeState.from_dict(news_id, data)

    def toggle_like(self, news_id: int, user_id: int | None) -> LikeState:
        data = self._request("POST", f"/api/likes/{news_id}", json={"userId": user_id}) or {}
        return LikeState.from_dict(news_id, data)

    # Comments

    def get_comments(
        self, news_id: int, page: int = 1, limit: int = COMMENTS_PAGE_SIZE
    ) -> CommentPage:
        data = self._request(
            "GET", f"/api/comments/{news_id}", params={"page": page, "limit": limit}
        ) or {}
        comments = []
        for entry in data.get("comments") or []:
            try:
                comments.append(Comment.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed comment: %s", e)
        return CommentPage(
            comments=comments,
            total_count=int(data.get("totalCount") or 0),
            page=page,
        )

    def add_comment(self, news_id: int, user_id: int | None, content: str) -> None:
        self._request(
            "POST",
            f"/api/comments/{news_id}",
            json={"userId": user_id, "content": content.strip()},
        )

    def edit_comment(self, comment_id: int, content: str) -> None:
        self._request("PUT", f"/api/comments/edit/{comment_id}", json={"content": content})

    def delete_comment(self, comment_id: int) -> None:
        self._request("DELETE", f"/api/comments/{comment_id}")

    def approve_comment(self, comment_id: int) -> None:
        self._request("PUT", f"/api/comments/approve/{comment_id}", json={})

    # Auth / profile

    def sign_in(self, email: str, password: str) -> tuple[UserProfile, str]:
        """Sign in and return the user with their bearer credential.

        Raises:
            ApiError: unauthorized on bad credentials
        """
        data = self._request(
            "POST", "/api/auth/signin", json={"email": email, "password": password}
        ) or {}
        if not data.get("token") or not isinstance(data.get("user"), dict):
            raise ApiError("parse_error", data.get("error") or "Failed to login")
        return UserProfile.from_dict(data["user"]), data["token"]

    def sign_out(self) -> None:
        self._request("POST", "/api/auth/signout", json={})

    def update_password(self, user_id: int, current_password: str, new_password: str) -> None:
        self._request(
            "PUT",
            f"/api/users/edit/{user_id}/password",
            json={"currentPassword": current_password, "newPassword": new_password},
        )

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            Decoded JSON, or None for an empty body

        Raises:
            ApiError: For every failure, typed by cause
        """
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                params=params,
                json=json,
                timeout=self._timeout,
            )

            if response.status_code == 404:
                raise ApiError("not_found", f"{method} {path} not found", status_code=404)
            if response.status_code in (401, 403):
                raise ApiError(
                    "unauthorized",
                    f"{method} {path} rejected credentials",
                    status_code=response.status_code,
                )

            response.raise_for_status()

        except ApiError:
            raise
        except Exception as e:
            raise ApiError("connection_error", str(e)) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError("parse_error", f"Invalid JSON from {path}: {e}") from e
