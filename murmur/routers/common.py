"""
Helpers shared by the routers: pagination parameters and page links,
post id parsing and multipart media validation.
"""
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import ulid
from fastapi import HTTPException, Query, Request, UploadFile, status

from murmur.clients.storage_client import MediaUpload

DEFAULT_LIMIT = 100


@dataclass
class Pagination:
    offset: int = 0
    limit: int = DEFAULT_LIMIT

    def query_items(self) -> list[tuple[str, str]]:
        return [("offset", str(self.offset)), ("limit", str(self.limit))]


def pagination_params(
    offset: int = Query(0, ge=0, description="Offset of the first item. Defaults to 0."),
    limit: int = Query(
        DEFAULT_LIMIT, description="Maximum number of items (0-1000). Defaults to 100."
    ),
) -> Pagination:
    return Pagination(offset=offset, limit=limit)


def page_links(
    request: Request,
    total: int,
    pagination: Pagination,
    extra: Optional[list[tuple[str, str]]] = None,
) -> tuple[Optional[str], Optional[str]]:
    """
    Links to the next and previous page of the current endpoint.
    next     → only when more items exist past offset + limit
    previous → only when offset > 0, clamped at offset 0
    """
    extra = extra or []

    def link(offset: int) -> str:
        page = Pagination(offset=offset, limit=pagination.limit)
        query = urlencode(page.query_items() + extra)
        return str(request.url.replace(query=query))

    next_link = (
        link(pagination.offset + pagination.limit)
        if total > pagination.offset + pagination.limit
        else None
    )
    previous_link = (
        link(max(pagination.offset - pagination.limit, 0))
        if pagination.offset > 0
        else None
    )
    return next_link, previous_link


def parse_ulid(value: str, name: str = "id") -> str:
    """Validate a ULID and return its canonical (upper case) form."""
    try:
        return ulid.from_str(value).str
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"'{name}' is not a valid ULID.",
        )


def post_id_path(id: str) -> str:  # noqa: A002
    return parse_ulid(id)


async def read_media(
    upload: Optional[UploadFile],
    max_bytes: int,
    unsupported_status: int = status.HTTP_400_BAD_REQUEST,
) -> Optional[MediaUpload]:
    """Read an uploaded image, enforcing the content type and size limit."""
    if upload is None:
        return None

    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=unsupported_status, detail="Media must be an image.")

    data = await upload.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Media exceeds the upload limit of {max_bytes} bytes.",
        )
    return MediaUpload(data=data, content_type=content_type)
