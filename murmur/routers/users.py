"""
User endpoints:
  GET    /users                  — list users (paginated)
  PATCH  /users                  — update the caller's profile
  PUT    /users/avatar           — upload the caller's avatar, returns the URL
  DELETE /users/avatar           — remove the caller's avatar
  GET    /users/{id}             — fetch a user
  GET    /users/{id}/followers   — users following {id}
  GET    /users/{id}/followees   — users {id} follows
  PUT    /users/{id}/followers   — caller follows {id}
  DELETE /users/{id}/followers   — caller unfollows {id}

Authenticated callers see full profiles (names); anonymous callers only
the public part (id, username, avatar).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import PlainTextResponse
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from murmur.auth import get_optional_user_id, get_user_id
from murmur.clients.storage_client import ObjectStorage, get_storage
from murmur.config import settings
from murmur.database import get_db
from murmur.routers.common import Pagination, page_links, pagination_params, read_media
from murmur.schemas import PaginatedResult, PublicUser, UpdateUserData, User, user_view
from murmur.services.users import UserService

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def get_user_service(
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> UserService:
    return UserService(db, storage)


def _user_page(request: Request, users: list, total: int, pagination: Pagination, authenticated: bool):
    next_link, previous_link = page_links(request, total, pagination)
    model = PaginatedResult[User] if authenticated else PaginatedResult[PublicUser]
    return model(
        count=total,
        data=[user_view(u, authenticated) for u in users],
        next=next_link,
        previous=previous_link,
    )


@router.get("", response_model=None)
async def list_users(
    request: Request,
    pagination: Pagination = Depends(pagination_params),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    rows, total = await users.list_users(pagination.offset, pagination.limit)
    return _user_page(request, rows, total, pagination, viewer_id is not None)


@router.patch("", status_code=status.HTTP_204_NO_CONTENT)
async def update_profile(
    body: UpdateUserData,
    user_id: str = Depends(get_user_id),
    users: UserService = Depends(get_user_service),
):
    """Partial profile update. Omitted fields are kept; empty strings are rejected."""
    for name in ("firstname", "lastname", "username"):
        if getattr(body, name) == "":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{name.capitalize()} is an empty string.",
            )

    with tracer.start_as_current_span("update_profile"):
        await users.update_profile(user_id, body.firstname, body.lastname, body.username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/avatar", response_class=PlainTextResponse)
async def upload_avatar(
    media: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_user_id),
    users: UserService = Depends(get_user_service),
):
    """Upload an avatar for the caller. Upload limit: 0.5 MB."""
    if media is None:
        return PlainTextResponse("Media must be an image.", status_code=status.HTTP_400_BAD_REQUEST)

    with tracer.start_as_current_span("upload_avatar"):
        upload = await read_media(
            media,
            settings.avatar_max_bytes,
            unsupported_status=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        )
        url = await users.update_avatar(user_id, upload)
    return PlainTextResponse(url)


@router.delete("/avatar", status_code=status.HTTP_204_NO_CONTENT)
async def delete_avatar(
    user_id: str = Depends(get_user_id),
    users: UserService = Depends(get_user_service),
):
    with tracer.start_as_current_span("delete_avatar"):
        await users.update_avatar(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{id}", response_model=None)
async def get_user(
    id: str,  # noqa: A002
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    user = await users.get_by_id(id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user_view(user, viewer_id is not None)


@router.get("/{id}/followers", response_model=None)
async def list_followers(
    request: Request,
    id: str,  # noqa: A002
    pagination: Pagination = Depends(pagination_params),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    """Users following the given user. An unknown user simply has none."""
    rows, total = await users.followers(id, pagination.offset, pagination.limit)
    return _user_page(request, rows, total, pagination, viewer_id is not None)


@router.get("/{id}/followees", response_model=None)
async def list_followees(
    request: Request,
    id: str,  # noqa: A002
    pagination: Pagination = Depends(pagination_params),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    """Users the given user follows. An unknown user simply follows nobody."""
    rows, total = await users.followees(id, pagination.offset, pagination.limit)
    return _user_page(request, rows, total, pagination, viewer_id is not None)


@router.put("/{id}/followers", status_code=status.HTTP_204_NO_CONTENT)
async def follow_user(
    id: str,  # noqa: A002
    user_id: str = Depends(get_user_id),
    users: UserService = Depends(get_user_service),
):
    """The caller follows user {id}. Idempotent."""
    with tracer.start_as_current_span("follow_user"):
        await users.follow(user_id, id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{id}/followers", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_user(
    id: str,  # noqa: A002
    user_id: str = Depends(get_user_id),
    users: UserService = Depends(get_user_service),
):
    """The caller unfollows user {id}. Idempotent."""
    with tracer.start_as_current_span("unfollow_user"):
        await users.unfollow(user_id, id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
