"""Feed persistence: posts, comments and votes in the relational store.

When the store cannot be reached every call answers from an in-process
fallback memory instead of raising. Writes made while degraded are also
queued in an outbox and replayed, in order, the next time the store
answers.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from smartedu.db.models import Comment, Post, Vote
from smartedu.feed.realtime import ChangeCallback, RealtimeChannel
from smartedu.subscriptions import Subscription

logger = structlog.get_logger()

VoteType = Literal["UP", "DOWN"]

BACKEND_ERRORS = (SQLAlchemyError, OSError)

SEED_POST_ID = "mock-1"
DEFAULT_FLAIR = "Innovator"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _millis() -> int:
    return int(time.time() * 1000)


class VoteRecord(BaseModel):
    user_id: str | None = None
    type: VoteType


class PostRecord(BaseModel):
    id: str
    user_id: str | None = None
    author_name: str | None = None
    avatar_url: str | None = None
    flair: str | None = None
    content: str
    created_at: datetime = Field(default_factory=_now)
    votes: list[VoteRecord] = Field(default_factory=list)


class CommentRecord(BaseModel):
    id: str
    post_id: str
    user_id: str | None = None
    author_name: str | None = None
    avatar_url: str | None = None
    content: str
    created_at: datetime = Field(default_factory=_now)


class OutboxEntry(BaseModel):
    """A write made while the store was unreachable."""

    kind: Literal["post", "comment", "vote"]
    payload: dict[str, Any]
    local_id: str | None = None
    enqueued_at: datetime = Field(default_factory=_now)


def seed_post() -> PostRecord:
    return PostRecord(
        id=SEED_POST_ID,
        author_name="T-Hub Admin",
        content="Welcome to the SmartEdu Ecosystem. Establish your node identity to begin.",
        flair="Institutional",
        avatar_url="https://api.dicebear.com/7.x/bottts/svg?seed=admin",
    )


def _post_record(post: Post) -> PostRecord:
    return PostRecord(
        id=str(post.id),
        user_id=str(post.user_id) if post.user_id else None,
        author_name=post.author_name,
        avatar_url=post.avatar_url,
        flair=post.flair,
        content=post.content,
        created_at=post.created_at,
        votes=[VoteRecord(user_id=str(v.user_id), type=v.type) for v in post.votes],
    )


def _comment_record(comment: Comment) -> CommentRecord:
    return CommentRecord(
        id=str(comment.id),
        post_id=str(comment.post_id),
        user_id=str(comment.user_id) if comment.user_id else None,
        author_name=comment.author_name,
        avatar_url=comment.avatar_url,
        content=comment.content,
        created_at=comment.created_at,
    )


class FeedService:
    """Remote boundary for the feed with a degraded-mode fallback and outbox."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        realtime: RealtimeChannel | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._realtime = realtime
        self._memory_posts: list[PostRecord] = []
        self._memory_comments: list[CommentRecord] = []
        self._memory_votes: dict[tuple[str, str], VoteType] = {}
        self._outbox: deque[OutboxEntry] = deque()
        self._replayed_ids: dict[str, str] = {}

    @property
    def outbox(self) -> list[OutboxEntry]:
        return list(self._outbox)

    @property
    def memory_posts(self) -> list[PostRecord]:
        return list(self._memory_posts)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_posts(self) -> list[PostRecord]:
        """All posts newest first with their votes, or the fallback posts."""
        await self.replay_outbox()
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Post).options(selectinload(Post.votes)).order_by(Post.created_at.desc())
                )
                posts = [_post_record(p) for p in result.scalars().all()]
        except BACKEND_ERRORS:
            logger.warning("feed_fetch_posts_failed", fallback_posts=len(self._memory_posts), exc_info=True)
            return self._fallback_posts()
        return posts

    def _fallback_posts(self) -> list[PostRecord]:
        if self._memory_posts:
            return [p.model_copy(deep=True) for p in self._memory_posts]
        seed = seed_post()
        seed.votes = [
            VoteRecord(user_id=user_id, type=vote_type)
            for (post_id, user_id), vote_type in self._memory_votes.items()
            if post_id == SEED_POST_ID
        ]
        return [seed]

    async def fetch_comments(self, post_id: str) -> list[CommentRecord]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Comment).where(Comment.post_id == post_id).order_by(Comment.created_at)
                )
                return [_comment_record(c) for c in result.scalars().all()]
        except BACKEND_ERRORS:
            logger.warning("feed_fetch_comments_failed", post_id=post_id, exc_info=True)
            return [c for c in self._memory_comments if c.post_id == post_id]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _insert_post(self, payload: dict[str, Any]) -> PostRecord:
        post = Post(id=str(uuid.uuid4()), created_at=_now(), **payload)
        async with self._session_factory() as db:
            db.add(post)
            await db.commit()
        record = PostRecord(id=str(post.id), created_at=post.created_at, **payload)
        await self._publish("posts", "INSERT", record.id)
        return record

    async def _insert_comment(self, payload: dict[str, Any]) -> CommentRecord:
        comment = Comment(id=str(uuid.uuid4()), created_at=_now(), **payload)
        async with self._session_factory() as db:
            db.add(comment)
            await db.commit()
        record = CommentRecord(id=str(comment.id), created_at=comment.created_at, **payload)
        await self._publish("comments", "INSERT", record.id)
        return record

    async def _upsert_vote(self, post_id: str, user_id: str, vote_type: VoteType) -> None:
        stmt = (
            pg_insert(Vote)
            .values(id=str(uuid.uuid4()), post_id=post_id, user_id=user_id, type=vote_type)
            .on_conflict_do_update(constraint="uq_votes_post_user", set_={"type": vote_type})
        )
        async with self._session_factory() as db:
            await db.execute(stmt)
            await db.commit()
        # Vote changes alter the post's tally, so they are announced on posts.
        await self._publish("posts", "UPDATE", post_id)

    async def create_post(
        self,
        content: str,
        user_id: str,
        author_name: str,
        avatar: str,
        flair: str | None = None,
    ) -> PostRecord:
        payload = {
            "content": content,
            "user_id": user_id,
            "author_name": author_name,
            "avatar_url": avatar,
            "flair": flair or DEFAULT_FLAIR,
        }
        try:
            return await self._insert_post(payload)
        except BACKEND_ERRORS:
            logger.warning("feed_create_post_buffered", user_id=user_id, exc_info=True)

        local = PostRecord(id=f"local-{_millis()}", **payload)
        self._memory_posts.insert(0, local)
        self._outbox.append(OutboxEntry(kind="post", payload=payload, local_id=local.id))
        return local

    async def create_comment(
        self,
        post_id: str,
        content: str,
        user_id: str,
        author_name: str,
        avatar: str,
    ) -> CommentRecord:
        payload = {
            "post_id": post_id,
            "content": content,
            "user_id": user_id,
            "author_name": author_name,
            "avatar_url": avatar,
        }
        try:
            return await self._insert_comment(payload)
        except BACKEND_ERRORS:
            logger.warning("feed_create_comment_buffered", post_id=post_id, exc_info=True)

        local = CommentRecord(id=f"c-{_millis()}", **payload)
        self._memory_comments.append(local)
        if not post_id.startswith("mock-"):
            self._outbox.append(OutboxEntry(kind="comment", payload=payload, local_id=local.id))
        return local

    async def cast_vote(self, post_id: str, user_id: str, vote_type: VoteType) -> bool:
        """Record the user's single vote on a post.

        Returns True when the store confirmed it, False when it was buffered.
        """
        try:
            await self._upsert_vote(post_id, user_id, vote_type)
            return True
        except BACKEND_ERRORS:
            logger.warning("feed_cast_vote_buffered", post_id=post_id, exc_info=True)

        self._memory_votes[(post_id, user_id)] = vote_type
        for post in self._memory_posts:
            if post.id == post_id:
                post.votes = [v for v in post.votes if v.user_id != user_id]
                post.votes.append(VoteRecord(user_id=user_id, type=vote_type))
        if not post_id.startswith("mock-"):
            self._outbox.append(
                OutboxEntry(kind="vote", payload={"post_id": post_id, "user_id": user_id, "type": vote_type})
            )
        return False

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    async def replay_outbox(self) -> int:
        """Replay buffered writes in order, stopping at the first failure.

        Local post ids referenced by later comments or votes are rewritten to
        the ids the store assigned. Returns the number of entries replayed.
        """
        replayed = 0
        while self._outbox:
            entry = self._outbox[0]
            try:
                await self._replay(entry)
            except BACKEND_ERRORS:
                logger.info("feed_outbox_replay_deferred", pending=len(self._outbox), kind=entry.kind)
                break
            self._outbox.popleft()
            replayed += 1

        if replayed:
            logger.info("feed_outbox_replayed", replayed=replayed, pending=len(self._outbox))
        return replayed

    async def _replay(self, entry: OutboxEntry) -> None:
        payload = dict(entry.payload)
        if "post_id" in payload:
            payload["post_id"] = self._replayed_ids.get(payload["post_id"], payload["post_id"])

        if entry.kind == "post":
            record = await self._insert_post(payload)
            self._replayed_ids[entry.local_id] = record.id
            self._memory_posts = [p for p in self._memory_posts if p.id != entry.local_id]
        elif entry.kind == "comment":
            await self._insert_comment(payload)
            self._memory_comments = [c for c in self._memory_comments if c.id != entry.local_id]
        else:
            await self._upsert_vote(payload["post_id"], payload["user_id"], payload["type"])

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def subscribe_to_changes(self, callback: ChangeCallback) -> Subscription:
        """Call ``callback`` on every change to the posts record set."""
        if self._realtime is None:
            return Subscription(lambda: None)
        return self._realtime.subscribe("posts", callback)

    async def _publish(self, table: str, event: str, record_id: str) -> None:
        if self._realtime is not None:
            await self._realtime.publish(table, event, record_id)
