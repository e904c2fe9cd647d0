"""Feed router: all /api/v1/feed/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from smartedu.controller import AppController
from smartedu.dependencies import get_controller
from smartedu.feed.service import CommentRecord, PostRecord, VoteType
from smartedu.feed.synchronizer import CommentView, FeedTab, PostView

router = APIRouter(prefix="/api/v1/feed", tags=["Feed"])


class ContentRequest(BaseModel):
    content: str


class VoteRequest(BaseModel):
    type: VoteType


class PostListResponse(BaseModel):
    posts: list[PostView]


class PostCreatedResponse(PostListResponse):
    post: PostRecord | None = None


class VoteResponse(BaseModel):
    applied: bool
    post: PostView | None = None


class CommentPanelResponse(BaseModel):
    open: bool
    comments: list[CommentView]


class CommentCreatedResponse(BaseModel):
    comment: CommentRecord | None = None
    comments: list[CommentView]


@router.get("/posts", response_model=PostListResponse)
async def list_posts(
    tab: FeedTab = Query("HOT"),
    refresh: bool = Query(False),
    controller: AppController = Depends(get_controller),
) -> PostListResponse:
    if refresh:
        await controller.feed.load_posts()
    return PostListResponse(posts=controller.feed.sorted_posts(tab))


@router.post("/posts", response_model=PostCreatedResponse)
async def create_post(
    body: ContentRequest,
    controller: AppController = Depends(get_controller),
) -> PostCreatedResponse:
    """Broadcast a post. ``post`` is null when it was rejected or failed."""
    record = await controller.feed.create_post(body.content)
    return PostCreatedResponse(post=record, posts=controller.feed.sorted_posts("NEW"))


@router.post("/posts/{post_id}/votes", response_model=VoteResponse)
async def cast_vote(
    post_id: str,
    body: VoteRequest,
    controller: AppController = Depends(get_controller),
) -> VoteResponse:
    if not any(p.id == post_id for p in controller.feed.posts):
        raise HTTPException(status_code=404, detail="Post not found")
    applied = await controller.feed.cast_vote(post_id, body.type)
    post = next((p for p in controller.feed.posts if p.id == post_id), None)
    return VoteResponse(applied=applied, post=post)


@router.post("/posts/{post_id}/comments/toggle", response_model=CommentPanelResponse)
async def toggle_comments(
    post_id: str,
    controller: AppController = Depends(get_controller),
) -> CommentPanelResponse:
    is_open = await controller.feed.toggle_comments(post_id)
    return CommentPanelResponse(open=is_open, comments=controller.feed.comments.get(post_id, []))


@router.get("/posts/{post_id}/comments", response_model=list[CommentView])
async def list_comments(
    post_id: str,
    controller: AppController = Depends(get_controller),
) -> list[CommentView]:
    return await controller.feed.load_comments(post_id)


@router.post("/posts/{post_id}/comments", response_model=CommentCreatedResponse)
async def reply(
    post_id: str,
    body: ContentRequest,
    controller: AppController = Depends(get_controller),
) -> CommentCreatedResponse:
    record = await controller.feed.reply(post_id, body.content)
    return CommentCreatedResponse(comment=record, comments=controller.feed.comments.get(post_id, []))
