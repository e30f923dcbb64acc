"""
Post endpoints:
  GET    /posts                — search top-level posts (paginated)
  POST   /posts                — create a post (multipart: text?, media?)
  GET    /posts/_sse           — server-sent event stream of post updates
  GET    /posts/{id}           — fetch a single top-level post
  PUT    /posts/{id}           — replace text and media
  PATCH  /posts/{id}           — update text only
  DELETE /posts/{id}           — soft delete
  PUT    /posts/{id}/media     — replace media, returns the new URL
  DELETE /posts/{id}/media     — remove media
  GET    /posts/{id}/replies   — paginated replies
  POST   /posts/{id}/replies   — create a reply
  PUT    /posts/{id}/likes     — like (idempotent)
  DELETE /posts/{id}/likes     — unlike (idempotent)

Every successful write is broadcast on the shared event stream after the
database commit. Broadcast failures never fail the request.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from murmur.auth import get_optional_user_id, get_user_id
from murmur.clients.storage_client import ObjectStorage, get_storage
from murmur.config import settings
from murmur.database import get_db
from murmur.routers.common import (
    Pagination,
    page_links,
    pagination_params,
    parse_ulid,
    post_id_path,
    read_media,
)
from murmur.schemas import PaginatedResult, Post, Reply, UpdatePostData
from murmur.services.post_updates import PostUpdates, event_stream, get_post_updates
from murmur.services.posts import PostSearch, PostService
from murmur.telemetry import POST_LIKES_TOTAL, POSTS_CREATED_TOTAL

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def get_post_service(
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> PostService:
    return PostService(db, storage)


def _form_text(text: Optional[str]) -> Optional[str]:
    # Browsers send empty form fields as ""
    return text if text else None


@router.get("", response_model=PaginatedResult[Post])
async def search_posts(
    request: Request,
    pagination: Pagination = Depends(pagination_params),
    newer_than: Optional[str] = Query(None, alias="newerThan"),
    older_than: Optional[str] = Query(None, alias="olderThan"),
    text: Optional[str] = Query(None),
    tags: Optional[list[str]] = Query(None),
    creators: Optional[list[str]] = Query(None),
    liked_by: Optional[list[str]] = Query(None, alias="likedBy"),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    posts: PostService = Depends(get_post_service),
):
    """Search top-level posts, newest first. List filters are OR'ed within themselves."""
    search = PostSearch(
        offset=pagination.offset,
        limit=pagination.limit,
        newer_than=parse_ulid(newer_than, "newerThan") if newer_than else None,
        older_than=parse_ulid(older_than, "olderThan") if older_than else None,
        text=text or None,
        tags=tags or [],
        creators=creators or [],
        liked_by=liked_by or [],
    )
    records, total = await posts.search(search, viewer_id)

    extra: list[tuple[str, str]] = []
    if search.newer_than:
        extra.append(("newerThan", search.newer_than))
    if search.older_than:
        extra.append(("olderThan", search.older_than))
    if search.text:
        extra.append(("text", search.text))
    extra += [("tags", tag) for tag in search.tags]
    extra += [("creators", creator) for creator in search.creators]
    extra += [("likedBy", liker) for liker in search.liked_by]

    next_link, previous_link = page_links(request, total, pagination, extra)
    return PaginatedResult[Post](
        count=total,
        data=[Post.from_record(r, viewer_id) for r in records],
        next=next_link,
        previous=previous_link,
    )


@router.post("", response_model=Post)
async def create_post(
    text: Optional[str] = Form(None),
    media: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Create a post with text and/or an image. Upload limit: 2 MB."""
    with tracer.start_as_current_span("create_post") as span:
        upload = await read_media(media, settings.post_media_max_bytes)
        record = await posts.create(user_id, text=_form_text(text), media=upload)
        span.set_attribute("post.id", record.post.id)

        POSTS_CREATED_TOTAL.labels(kind="post").inc()
        await updates.new_post(Post.from_record(record))
        return Post.from_record(record, user_id)


@router.get("/_sse", response_class=StreamingResponse)
async def post_stream(request: Request, updates: PostUpdates = Depends(get_post_updates)):
    """Server-sent events for every post change, as they happen."""
    return StreamingResponse(
        event_stream(request, updates),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{id}", response_model=Post)
async def get_post(
    post_id: str = Depends(post_id_path),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    posts: PostService = Depends(get_post_service),
):
    record = await posts.get_by_id(post_id, viewer_id)
    return Post.from_record(record, viewer_id)


@router.put("/{id}", response_model=Post)
async def replace_post(
    post_id: str = Depends(post_id_path),
    text: Optional[str] = Form(None),
    media: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Replace the entire post. There is no partial update on this method."""
    with tracer.start_as_current_span("replace_post") as span:
        span.set_attribute("post.id", post_id)
        upload = await read_media(media, settings.post_media_max_bytes)
        record = await posts.replace(user_id, post_id, text=_form_text(text), media=upload)

        await updates.post_updated(Post.from_record(record))
        return Post.from_record(record, user_id)


@router.patch("/{id}", status_code=status.HTTP_204_NO_CONTENT)
async def patch_post(
    body: UpdatePostData,
    post_id: str = Depends(post_id_path),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Update the text. Omitted text is ignored; an empty string removes it."""
    if body.text is not None:
        with tracer.start_as_current_span("patch_post") as span:
            span.set_attribute("post.id", post_id)
            record = await posts.patch_text(user_id, post_id, body.text)
            await updates.post_updated(Post.from_record(record))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str = Depends(post_id_path),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Soft delete a post or reply. It disappears from every read."""
    with tracer.start_as_current_span("delete_post"):
        await posts.delete(user_id, post_id)
        await updates.post_deleted(post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{id}/media", response_class=PlainTextResponse)
async def replace_post_media(
    post_id: str = Depends(post_id_path),
    media: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Replace the media of a post and return the new media URL."""
    if media is None:
        return PlainTextResponse("Media must be an image.", status_code=status.HTTP_400_BAD_REQUEST)

    with tracer.start_as_current_span("replace_post_media"):
        upload = await read_media(media, settings.post_media_max_bytes)
        record = await posts.replace_media(user_id, post_id, upload)
        await updates.post_updated(Post.from_record(record))
        return PlainTextResponse(record.post.media_url)


@router.delete("/{id}/media", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post_media(
    post_id: str = Depends(post_id_path),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Remove the media. Fails when the post would be left without text."""
    with tracer.start_as_current_span("delete_post_media"):
        record = await posts.replace_media(user_id, post_id)
        await updates.post_updated(Post.from_record(record))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{id}/replies", response_model=PaginatedResult[Reply])
async def get_replies(
    request: Request,
    post_id: str = Depends(post_id_path),
    pagination: Pagination = Depends(pagination_params),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    posts: PostService = Depends(get_post_service),
):
    """Replies of a post, newest first. Replies cannot have replies."""
    records, total = await posts.get_replies(
        post_id, pagination.offset, pagination.limit, viewer_id
    )
    next_link, previous_link = page_links(request, total, pagination)
    return PaginatedResult[Reply](
        count=total,
        data=[Reply.from_record(r, viewer_id) for r in records],
        next=next_link,
        previous=previous_link,
    )


@router.post("/{id}/replies", response_model=Reply)
async def create_reply(
    post_id: str = Depends(post_id_path),
    text: Optional[str] = Form(None),
    media: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Reply to a top-level post. Replying to a reply is a bad request."""
    with tracer.start_as_current_span("create_reply") as span:
        span.set_attribute("post.parent_id", post_id)
        upload = await read_media(media, settings.post_media_max_bytes)
        record = await posts.create(user_id, parent_id=post_id, text=_form_text(text), media=upload)

        POSTS_CREATED_TOTAL.labels(kind="reply").inc()
        await updates.new_post(Reply.from_record(record))
        return Reply.from_record(record, user_id)


@router.put("/{id}/likes", status_code=status.HTTP_204_NO_CONTENT)
async def like_post(
    post_id: str = Depends(post_id_path),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Like a post. Idempotent, only an actual change is broadcast."""
    with tracer.start_as_current_span("like_post"):
        if await posts.like(user_id, post_id):
            POST_LIKES_TOTAL.labels(action="like").inc()
            await updates.post_liked(user_id, post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{id}/likes", status_code=status.HTTP_204_NO_CONTENT)
async def unlike_post(
    post_id: str = Depends(post_id_path),
    user_id: str = Depends(get_user_id),
    posts: PostService = Depends(get_post_service),
    updates: PostUpdates = Depends(get_post_updates),
):
    """Unlike a post. Idempotent, only an actual change is broadcast."""
    with tracer.start_as_current_span("unlike_post"):
        if await posts.unlike(user_id, post_id):
            POST_LIKES_TOTAL.labels(action="unlike").inc()
            await updates.post_unliked(user_id, post_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
