from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import errors
from social_api.config import settings
from social_api.database import get_db
from social_api.media import MediaStore, media_store
from social_api.models import User
from social_api.security import decode_access_token

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the ``Authorization: Bearer`` token to the requesting User.

    Workflows only ever see the loaded User, never the raw token.
    """
    if credentials is None:
        raise errors.Unauthorized("Authentication required")
    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise errors.Unauthorized("Invalid or expired token")
    user = await db.get(User, user_id)
    if user is None:
        raise errors.Unauthorized("Invalid or expired token")
    return user


def get_media_store() -> MediaStore:
    """Media store used by the workflows; overridden in tests."""
    return media_store


class PaginationParams:
    """
    Reusable FastAPI dependency that parses and validates pagination
    query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Number of items per page, between 1 and ``settings.MAX_PAGE_SIZE``;
        larger values are rejected with 422.
    offset:
        Computed SQL OFFSET derived from *page* and *page_size*.
    """

    def __init__(
        self,
        page: int = Query(
            1,
            ge=1,
            description="Page number (1-based).",
        ),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=settings.MAX_PAGE_SIZE,
            description=f"Number of items returned per page (max {settings.MAX_PAGE_SIZE}).",
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size

    @property
    def offset(self) -> int:
        """SQL OFFSET value computed from the current page and page size."""
        return (self.page - 1) * self.page_size
