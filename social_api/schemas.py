from datetime import datetime
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from social_api import errors

RequestT = TypeVar("RequestT", bound=BaseModel)


class RequestModel(BaseModel):
    """Base for per-operation request payloads: strings are stripped first."""

    model_config = ConfigDict(str_strip_whitespace=True)


def parse_request(model: type[RequestT], **data: Any) -> RequestT:
    """
    Build *model* from loose form fields, raising the application's
    ``ValidationError`` (with a fixed message naming the first bad field)
    instead of pydantic's.
    """
    try:
        return model(**data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        name = str(first["loc"][0]) if first["loc"] else "request"
        label = name.replace("_", " ").capitalize()
        if first["type"] in ("missing", "string_too_short", "string_type"):
            raise errors.ValidationError(f"{label} is required") from exc
        raise errors.ValidationError(f"{label} is invalid", detail=str(exc)) from exc


# --- User ---

class UserRegister(RequestModel):
    firstname: str = Field(min_length=1, max_length=100)
    lastname: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=1, max_length=128)


class UserLogin(RequestModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class MediaResponse(BaseModel):
    url: str
    media_id: str


class UserResponse(BaseModel):
    id: int
    firstname: str
    lastname: str
    username: str
    email: str
    avatar: str | None = None
    cover_image: str | None = None
    created_at: datetime | None = None
    posts: list[int] = []
    comments: list[int] = []
    liked_posts: list[int] = []
    liked_comments: list[int] = []
    followers: list[int] = []
    following: list[int] = []


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# --- Post ---

class PostCreate(RequestModel):
    title: str = Field(min_length=1, max_length=300)
    content: str = Field(min_length=1)


class PostUpdate(RequestModel):
    title: str | None = Field(None, max_length=300)
    content: str | None = None

    @field_validator("title", "content")
    @classmethod
    def _blank_means_unchanged(cls, value: str | None) -> str | None:
        return value or None


class PostResponse(BaseModel):
    id: int
    user_id: int
    title: str
    content: str
    photos: list[MediaResponse] = []
    videos: list[MediaResponse] = []
    likes: list[int] = []
    comments: list[int] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


# --- Comment ---

class CommentCreate(RequestModel):
    content: str = Field(min_length=1)


class CommentUpdate(CommentCreate):
    pass


class CommentResponse(BaseModel):
    id: int
    user_id: int
    post_id: int
    content: str
    likes: list[int] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


# --- Envelope ---

class ApiResponse(BaseModel):
    status_code: int = 200
    data: Any = None
    message: str
    success: bool = True


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list  # Will be typed in router
    total: int
    page: int
    page_size: int
    pages: int


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_users: int
    total_posts: int
    total_comments: int
    total_post_likes: int
    total_follow_edges: int
    avg_comments_per_post: float
