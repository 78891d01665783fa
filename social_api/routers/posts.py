from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import errors
from social_api.config import settings
from social_api.database import get_db
from social_api.dependencies import PaginationParams, get_current_user, get_media_store
from social_api.media import MediaStore, stage_uploads
from social_api.models import User
from social_api.schemas import (
    ApiResponse,
    CommentCreate,
    PostCreate,
    PostUpdate,
    parse_request,
)
from social_api.services import comment_service, post_service

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])


def _check_counts(photos: list[UploadFile] | None, videos: list[UploadFile] | None) -> None:
    if len(photos or []) > settings.MAX_PHOTOS_PER_POST:
        raise errors.ValidationError(f"At most {settings.MAX_PHOTOS_PER_POST} photos are allowed")
    if len(videos or []) > settings.MAX_VIDEOS_PER_POST:
        raise errors.ValidationError(f"At most {settings.MAX_VIDEOS_PER_POST} videos are allowed")


def _discard(paths) -> None:
    for path in paths:
        path.unlink(missing_ok=True)


@router.get("", response_model=ApiResponse)
async def list_posts(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    page = await post_service.get_posts(db, pagination.page, pagination.page_size)
    return ApiResponse(data=page.model_dump(), message="Posts fetched successfully")


@router.post("", status_code=201, response_model=ApiResponse)
async def create_post(
    title: str = Form(""),
    content: str = Form(""),
    photos: list[UploadFile] | None = File(None),
    videos: list[UploadFile] | None = File(None),
    user: User = Depends(get_current_user),
    media: MediaStore = Depends(get_media_store),
    db: AsyncSession = Depends(get_db),
):
    data = parse_request(PostCreate, title=title, content=content)
    _check_counts(photos, videos)
    photo_paths: list[Path] = []
    video_paths: list[Path] = []
    try:
        photo_paths = await stage_uploads(photos)
        video_paths = await stage_uploads(videos)
        post = await post_service.create_post(db, media, user, data, photo_paths, video_paths)
    finally:
        _discard(photo_paths + video_paths)
    return ApiResponse(status_code=201, data=post, message="Post created successfully")


@router.get("/{post_id}", response_model=ApiResponse)
async def get_post(post_id: int, db: AsyncSession = Depends(get_db)):
    post = await post_service.get_post(db, post_id)
    return ApiResponse(data=post, message="Post fetched successfully")


@router.put("/{post_id}", response_model=ApiResponse)
async def update_post(
    post_id: int,
    title: str | None = Form(None),
    content: str | None = Form(None),
    photos: list[UploadFile] | None = File(None),
    videos: list[UploadFile] | None = File(None),
    user: User = Depends(get_current_user),
    media: MediaStore = Depends(get_media_store),
    db: AsyncSession = Depends(get_db),
):
    data = parse_request(PostUpdate, title=title, content=content)
    _check_counts(photos, videos)
    photo_paths: list[Path] = []
    video_paths: list[Path] = []
    try:
        photo_paths = await stage_uploads(photos)
        video_paths = await stage_uploads(videos)
        post = await post_service.update_post(
            db, media, post_id, user, data, photo_paths, video_paths
        )
    finally:
        _discard(photo_paths + video_paths)
    return ApiResponse(data=post, message="Post updated successfully")


@router.delete("/{post_id}", response_model=ApiResponse)
async def delete_post(
    post_id: int,
    user: User = Depends(get_current_user),
    media: MediaStore = Depends(get_media_store),
    db: AsyncSession = Depends(get_db),
):
    post = await post_service.delete_post(db, media, post_id, user)
    return ApiResponse(data=post, message="Post deleted successfully")


@router.post("/{post_id}/like", response_model=ApiResponse)
async def like_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post, changed = await post_service.like_post(db, post_id, user)
    if not changed:
        return ApiResponse(data=post, message="You have already liked this post")
    return ApiResponse(data=post, message="Post liked successfully")


@router.delete("/{post_id}/like", response_model=ApiResponse)
async def unlike_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await post_service.unlike_post(db, post_id, user)
    return ApiResponse(data=post, message="Post disliked successfully")


@router.get("/{post_id}/is-liked", response_model=ApiResponse)
async def is_liked(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    liked = await post_service.is_liked(db, post_id, user)
    message = "User has liked the post" if liked else "User has not liked the post"
    return ApiResponse(data={"liked": liked}, message=message)


@router.get("/{post_id}/comments", response_model=ApiResponse)
async def list_comments(post_id: int, db: AsyncSession = Depends(get_db)):
    comments = await comment_service.get_post_comments(db, post_id)
    return ApiResponse(data=comments, message="Comments fetched successfully")


@router.post("/{post_id}/comments", status_code=201, response_model=ApiResponse)
async def create_comment(
    post_id: int,
    data: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.create_comment(db, post_id, user, data)
    return ApiResponse(status_code=201, data=comment, message="Comment created successfully")
