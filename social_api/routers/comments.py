from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from social_api.database import get_db
from social_api.dependencies import get_current_user
from social_api.models import User
from social_api.schemas import ApiResponse, CommentUpdate
from social_api.services import comment_service

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])


@router.put("/{comment_id}", response_model=ApiResponse)
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.update_comment(db, comment_id, user, data)
    return ApiResponse(data=comment, message="Comment updated successfully")


@router.delete("/{comment_id}", response_model=ApiResponse)
async def delete_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.delete_comment(db, comment_id, user)
    return ApiResponse(data=comment, message="Comment deleted successfully")


@router.post("/{comment_id}/like", response_model=ApiResponse)
async def like_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment, changed = await comment_service.like_comment(db, comment_id, user)
    if not changed:
        return ApiResponse(data=comment, message="You have already liked the comment")
    return ApiResponse(data=comment, message="Comment liked successfully")


@router.delete("/{comment_id}/like", response_model=ApiResponse)
async def unlike_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.unlike_comment(db, comment_id, user)
    return ApiResponse(data=comment, message="Comment unliked successfully")
