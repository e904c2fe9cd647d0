"""Client-side feed cache with optimistic votes and realtime reconciliation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from smartedu.config import Settings, get_settings
from smartedu.feed.service import CommentRecord, FeedService, PostRecord, VoteType
from smartedu.notifications.queue import NotificationQueue
from smartedu.profile.store import ProfileStore
from smartedu.subscriptions import Subscription

logger = structlog.get_logger()

FeedTab = Literal["HOT", "NEW", "TOP"]


class PostView(BaseModel):
    id: str
    author: str
    author_id: str | None = None
    author_role: str
    avatar: str | None = None
    content: str
    timestamp: datetime
    votes: int = 0
    comments_count: int = 0
    liked_by: list[str] = Field(default_factory=list)
    downvoted_by: list[str] = Field(default_factory=list)
    verified: bool = True
    flair: str | None = None


class CommentView(BaseModel):
    id: str
    post_id: str
    author: str | None = None
    author_id: str | None = None
    avatar: str | None = None
    content: str
    timestamp: datetime


@dataclass
class PendingVote:
    """An optimistic vote not yet confirmed by the store."""

    seq: int
    user_id: str
    type: VoteType


def format_post(record: PostRecord, comments_count: int = 0) -> PostView:
    up = [v.user_id for v in record.votes if v.type == "UP" and v.user_id]
    down = [v.user_id for v in record.votes if v.type == "DOWN" and v.user_id]
    tally = sum(1 if v.type == "UP" else -1 for v in record.votes)
    return PostView(
        id=record.id,
        author=record.author_name or "Anonymous Innovator",
        author_id=record.user_id,
        author_role=record.flair or "Ecosystem Candidate",
        avatar=record.avatar_url,
        content=record.content,
        timestamp=record.created_at,
        votes=tally,
        comments_count=comments_count,
        liked_by=up,
        downvoted_by=down,
        flair=record.flair,
    )


def format_comment(record: CommentRecord) -> CommentView:
    return CommentView(
        id=record.id,
        post_id=record.post_id,
        author=record.author_name,
        author_id=record.user_id,
        avatar=record.avatar_url,
        content=record.content,
        timestamp=record.created_at,
    )


def _apply_vote(post: PostView, user_id: str, vote_type: VoteType) -> None:
    if vote_type == "UP":
        post.votes += 1
        post.liked_by.append(user_id)
    else:
        post.votes -= 1
        post.downvoted_by.append(user_id)


def _revert_vote(post: PostView, user_id: str, vote_type: VoteType) -> None:
    members = post.liked_by if vote_type == "UP" else post.downvoted_by
    if user_id not in members:
        return
    members.remove(user_id)
    post.votes += -1 if vote_type == "UP" else 1


class FeedSynchronizer:
    """Holds the formatted feed, open comment panels and unconfirmed votes.

    Each optimistic vote is tagged with a sequence number. A failed remote
    call rolls back only the vote carrying that number, and every refetch
    re-applies votes the server does not reflect yet.
    """

    def __init__(
        self,
        service: FeedService,
        store: ProfileStore,
        notifications: NotificationQueue,
        current_user_id: Callable[[], str | None],
        *,
        settings: Settings | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._service = service
        self._store = store
        self._notifications = notifications
        self._current_user_id = current_user_id
        self._settings = settings or get_settings()
        self._on_change = on_change

        self.posts: list[PostView] = []
        self.comments: dict[str, list[CommentView]] = {}
        self.open_comments: set[str] = set()
        self.loading = True

        self._pending_votes: dict[str, PendingVote] = {}
        self._seq = 0
        self._subscription: Subscription | None = None

    @property
    def pending_votes(self) -> dict[str, PendingVote]:
        return dict(self._pending_votes)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def _find(self, post_id: str) -> PostView | None:
        return next((p for p in self.posts if p.id == post_id), None)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_posts(self) -> list[PostView]:
        try:
            records = await self._service.fetch_posts()
        except Exception:
            logger.error("feed_sync_error", exc_info=True)
            return self.posts
        finally:
            self.loading = False

        posts = [format_post(r, len(self.comments.get(r.id, []))) for r in records]
        by_id = {p.id: p for p in posts}
        for post_id, pending in list(self._pending_votes.items()):
            post = by_id.get(post_id)
            if post is None:
                continue
            if pending.user_id in post.liked_by or pending.user_id in post.downvoted_by:
                del self._pending_votes[post_id]
                continue
            _apply_vote(post, pending.user_id, pending.type)

        self.posts = posts
        self._changed()
        return self.posts

    async def load_comments(self, post_id: str) -> list[CommentView]:
        try:
            records = await self._service.fetch_comments(post_id)
        except Exception:
            logger.error("comment_load_error", post_id=post_id, exc_info=True)
            return self.comments.get(post_id, [])

        formatted = [format_comment(r) for r in records]
        self.comments[post_id] = formatted
        post = self._find(post_id)
        if post is not None:
            post.comments_count = len(formatted)
        self._changed()
        return formatted

    async def toggle_comments(self, post_id: str) -> bool:
        """Open or close a comment panel. Opening always refetches its comments."""
        if post_id in self.open_comments:
            self.open_comments.discard(post_id)
            self._changed()
            return False

        self.open_comments.add(post_id)
        await self.load_comments(post_id)
        return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def cast_vote(self, post_id: str, vote_type: VoteType) -> bool:
        """Vote once per post. Returns False when the vote was not applied."""
        user_id = self._current_user_id()
        if not user_id:
            self._notifications.add("Identity verification required.", "info")
            return False

        post = self._find(post_id)
        if post is None:
            return False
        if user_id in post.liked_by or user_id in post.downvoted_by or post_id in self._pending_votes:
            return False

        self._seq += 1
        seq = self._seq
        _apply_vote(post, user_id, vote_type)
        self._pending_votes[post_id] = PendingVote(seq=seq, user_id=user_id, type=vote_type)
        self._changed()

        try:
            confirmed = await self._service.cast_vote(post_id, user_id, vote_type)
        except Exception:
            logger.warning("feed_vote_failed", post_id=post_id, exc_info=True)
            self._notifications.add("Network synergy interrupted.", "warning")
            pending = self._pending_votes.get(post_id)
            if pending is not None and pending.seq == seq:
                del self._pending_votes[post_id]
                current = self._find(post_id)
                if current is not None:
                    _revert_vote(current, user_id, vote_type)
                self._changed()
            return False

        if confirmed:
            pending = self._pending_votes.get(post_id)
            if pending is not None and pending.seq == seq:
                del self._pending_votes[post_id]
        else:
            self._notifications.add("Network synergy interrupted.", "warning")

        if vote_type == "UP":
            self._store.add_xp(self._settings.upvote_xp)
        return True

    async def create_post(self, content: str) -> PostRecord | None:
        user_id = self._current_user_id()
        if not content.strip() or not user_id:
            if not user_id:
                self._notifications.add("Please log in to broadcast.", "warning")
            return None

        profile = self._store.profile
        try:
            record = await self._service.create_post(content, user_id, profile.name, profile.avatar, profile.tagline)
        except Exception:
            logger.error("feed_create_post_failed", exc_info=True)
            self._notifications.add("Broadcast failure.", "error")
            return None

        self._store.add_xp(self._settings.post_xp)
        self._notifications.add("Broadcast shared!", "success")
        await self.load_posts()
        return record

    async def reply(self, post_id: str, content: str) -> CommentRecord | None:
        user_id = self._current_user_id()
        if not content.strip() or not user_id:
            if not user_id:
                self._notifications.add("Identity verification required.", "info")
            return None

        profile = self._store.profile
        try:
            record = await self._service.create_comment(post_id, content, user_id, profile.name, profile.avatar)
        except Exception:
            logger.error("feed_reply_failed", post_id=post_id, exc_info=True)
            self._notifications.add("Reply delivery failed.", "error")
            return None

        self._store.add_xp(self._settings.reply_xp)
        self._notifications.add("Reply committed.", "success")
        await self.load_comments(post_id)
        return record

    def sorted_posts(self, tab: FeedTab = "HOT") -> list[PostView]:
        if tab == "TOP":
            return sorted(self.posts, key=lambda p: p.votes, reverse=True)
        if tab == "NEW":
            return sorted(self.posts, key=lambda p: p.timestamp, reverse=True)
        return sorted(
            self.posts,
            key=lambda p: p.votes + len(self.comments.get(p.id, [])),
            reverse=True,
        )

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.load_posts()
        if self._subscription is None:
            self._subscription = self._service.subscribe_to_changes(self._on_remote_change)

    async def _on_remote_change(self, _payload: dict[str, Any]) -> None:
        await self.load_posts()
        for post_id in list(self.open_comments):
            await self.load_comments(post_id)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "posts": [p.model_dump(mode="json") for p in self.posts],
            "open_comments": sorted(self.open_comments),
            "comments": {
                post_id: [c.model_dump(mode="json") for c in comments] for post_id, comments in self.comments.items()
            },
            "loading": self.loading,
        }
