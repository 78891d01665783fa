from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from social_api.database import get_db
from social_api.dependencies import PaginationParams, get_current_user, get_media_store
from social_api.media import MediaStore, stage_uploads
from social_api.models import User
from social_api.schemas import ApiResponse, TokenResponse, UserLogin, UserRegister, parse_request
from social_api.services import comment_service, post_service, user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.post("/register", status_code=201, response_model=ApiResponse)
async def register(
    firstname: str = Form(""),
    lastname: str = Form(""),
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    avatar: UploadFile | None = File(None),
    cover_image: UploadFile | None = File(None),
    media: MediaStore = Depends(get_media_store),
    db: AsyncSession = Depends(get_db),
):
    data = parse_request(
        UserRegister,
        firstname=firstname,
        lastname=lastname,
        username=username,
        email=email,
        password=password,
    )
    avatar_paths: list[Path] = []
    cover_paths: list[Path] = []
    try:
        avatar_paths = await stage_uploads([avatar] if avatar else None)
        cover_paths = await stage_uploads([cover_image] if cover_image else None)
        user = await user_service.register_user(
            db,
            media,
            data,
            avatar=avatar_paths[0] if avatar_paths else None,
            cover_image=cover_paths[0] if cover_paths else None,
        )
    finally:
        for path in avatar_paths + cover_paths:
            path.unlink(missing_ok=True)
    return ApiResponse(status_code=201, data=user, message="User registered successfully")


@router.post("/login", response_model=ApiResponse)
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    token, user = await user_service.authenticate(db, data)
    return ApiResponse(
        data=TokenResponse(access_token=token, user=user).model_dump(mode="json"),
        message="Login successful",
    )


@router.get("/me", response_model=ApiResponse)
async def get_me(user: User = Depends(get_current_user)):
    return ApiResponse(data=user_service.user_to_dict(user), message="User fetched successfully")


@router.delete("/me", response_model=ApiResponse)
async def delete_me(
    user: User = Depends(get_current_user),
    media: MediaStore = Depends(get_media_store),
    db: AsyncSession = Depends(get_db),
):
    await user_service.delete_user(db, media, user)
    return ApiResponse(message="User deleted successfully")


@router.get("/search", response_model=ApiResponse)
async def search_users(
    username: str = Query(..., min_length=1),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    page = await user_service.search_users(db, username, pagination.page, pagination.page_size)
    return ApiResponse(data=page.model_dump(), message="Users fetched successfully")


@router.get("/{user_id}", response_model=ApiResponse)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_user(db, user_id)
    return ApiResponse(data=user, message="User fetched successfully")


@router.post("/{user_id}/follow", response_model=ApiResponse)
async def follow(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    me, changed = await user_service.follow_user(db, user_id, user)
    if not changed:
        return ApiResponse(data=me, message="User is already being followed")
    return ApiResponse(data=me, message="User followed successfully")


@router.delete("/{user_id}/follow", response_model=ApiResponse)
async def unfollow(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    me = await user_service.unfollow_user(db, user_id, user)
    return ApiResponse(data=me, message="Unfollowed user successfully")


@router.get("/{user_id}/is-following", response_model=ApiResponse)
async def is_following(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    following = await user_service.is_following(db, user_id, user)
    message = "User is being followed" if following else "User is not being followed"
    return ApiResponse(data={"following": following}, message=message)


@router.get("/{user_id}/followers", response_model=ApiResponse)
async def followers(user_id: int, db: AsyncSession = Depends(get_db)):
    users = await user_service.get_followers(db, user_id)
    return ApiResponse(data=users, message="Followers fetched successfully")


@router.get("/{user_id}/following", response_model=ApiResponse)
async def following(user_id: int, db: AsyncSession = Depends(get_db)):
    users = await user_service.get_following(db, user_id)
    return ApiResponse(data=users, message="Following fetched successfully")


@router.get("/{user_id}/posts", response_model=ApiResponse)
async def user_posts(user_id: int, db: AsyncSession = Depends(get_db)):
    posts = await post_service.get_user_posts(db, user_id)
    return ApiResponse(data=posts, message="User's posts fetched successfully")


@router.get("/{user_id}/liked-posts", response_model=ApiResponse)
async def liked_posts(user_id: int, db: AsyncSession = Depends(get_db)):
    posts = await post_service.get_liked_posts(db, user_id)
    return ApiResponse(data=posts, message="User's liked posts fetched successfully")


@router.get("/{user_id}/comments", response_model=ApiResponse)
async def user_comments(user_id: int, db: AsyncSession = Depends(get_db)):
    comments = await comment_service.get_user_comments(db, user_id)
    return ApiResponse(data=comments, message="Comments fetched successfully")
