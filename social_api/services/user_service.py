"""
User service — accounts, identity and the follow graph.

Follow edges are stored twice: the follower's ``following`` set and the
target's ``followers`` set. Both sides are written in the same request
session. Account deletion walks every collection and removes the user's
content and every reference to the user.
"""
import logging
import math
from pathlib import Path

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import errors, store
from social_api.media import MediaStore, delete_all, upload_all
from social_api.models import Comment, Post, User
from social_api.schemas import PaginatedResponse, UserLogin, UserRegister, UserResponse
from social_api.security import create_access_token, hash_password, verify_password
from social_api.services import post_service

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def user_to_dict(user: User) -> dict:
    """Serialise a User ORM instance; the password hash never leaves here."""
    return UserResponse(
        id=user.id,
        firstname=user.firstname,
        lastname=user.lastname,
        username=user.username,
        email=user.email,
        avatar=(user.avatar or {}).get("url"),
        cover_image=(user.cover_image or {}).get("url"),
        created_at=user.created_at,
        posts=store.members(user, "posts"),
        comments=store.members(user, "comments"),
        liked_posts=store.members(user, "liked_posts"),
        liked_comments=store.members(user, "liked_comments"),
        followers=store.members(user, "followers"),
        following=store.members(user, "following"),
    ).model_dump(mode="json")


async def _load_user(db: AsyncSession, user_id: int, for_update: bool = False) -> User:
    user = await store.find_by_id(db, User, user_id, for_update=for_update)
    if user is None:
        raise errors.NotFound("User not found")
    return user


async def _upload_one(media: MediaStore, path: Path | None) -> dict | None:
    if path is None:
        return None
    batch = await upload_all(media, [path])
    return batch.succeeded[0].to_dict() if batch.succeeded else None


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

async def register_user(
    db: AsyncSession,
    media: MediaStore,
    data: UserRegister,
    avatar: Path | None = None,
    cover_image: Path | None = None,
) -> dict:
    """
    Create an account.

    Raises ``Conflict`` when the username or email is taken. Avatar and
    cover image are optional; an image that fails to upload is left unset.
    """
    q = select(User.id).where(or_(User.username == data.username, User.email == data.email))
    if (await db.execute(q)).first() is not None:
        raise errors.Conflict("A user with this email or username already exists")

    user = User(
        firstname=data.firstname,
        lastname=data.lastname,
        username=data.username,
        email=data.email,
        password_hash=hash_password(data.password),
        avatar=await _upload_one(media, avatar),
        cover_image=await _upload_one(media, cover_image),
        posts=[],
        comments=[],
        liked_posts=[],
        liked_comments=[],
        followers=[],
        following=[],
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise errors.Conflict("A user with this email or username already exists") from exc

    logger.info("User %s registered as %r", user.id, user.username)
    return user_to_dict(user)


async def authenticate(db: AsyncSession, data: UserLogin) -> tuple[str, dict]:
    """Check credentials and return ``(access_token, user)``."""
    result = await db.execute(select(User).where(User.username == data.username))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(data.password, user.password_hash):
        raise errors.Unauthorized("Invalid username or password")
    return create_access_token(user.id), user_to_dict(user)


async def delete_user(db: AsyncSession, media: MediaStore, user: User) -> None:
    """
    Delete *user* with their posts (and the posts' media and comments), their
    comments on other posts, and every reference other documents hold to them.
    """
    posts = (await db.execute(select(Post).where(Post.user_id == user.id))).scalars().all()
    for post in posts:
        await post_service.purge_post(db, media, post)

    comments = (await db.execute(select(Comment).where(Comment.user_id == user.id))).scalars().all()
    comment_ids = [c.id for c in comments]
    for comment in comments:
        post = await store.find_by_id(db, Post, comment.post_id, for_update=True)
        if post is not None:
            store.pull(post, "comments", comment.id)
    if comment_ids:
        await store.delete_where(db, Comment, Comment.id.in_(comment_ids))
        for other in await store.find_all(db, User, for_update=True):
            store.pull_all(other, "liked_comments", comment_ids)

    await store.pull_everywhere(db, User, "followers", user.id)
    await store.pull_everywhere(db, User, "following", user.id)
    await store.pull_everywhere(db, Post, "likes", user.id)
    await store.pull_everywhere(db, Comment, "likes", user.id)

    images = [img["media_id"] for img in (user.avatar, user.cover_image) if img]
    if images:
        await delete_all(media, images)

    await store.delete_one(db, user)
    logger.info(
        "User %s deleted with %d posts and %d comments", user.id, len(posts), len(comment_ids)
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: int) -> dict:
    return user_to_dict(await _load_user(db, user_id))


async def search_users(
    db: AsyncSession, username: str, page: int = 1, page_size: int = 20
) -> PaginatedResponse:
    """Case-insensitive partial match on username."""
    escaped = username.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    condition = User.username.ilike(f"%{escaped}%", escape="\\")

    total: int = (
        await db.execute(select(func.count()).select_from(User).where(condition))
    ).scalar_one()
    q = (
        select(User)
        .where(condition)
        .order_by(User.username)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    users = (await db.execute(q)).scalars().all()
    return PaginatedResponse(
        items=[user_to_dict(u) for u in users],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


async def get_followers(db: AsyncSession, user_id: int) -> list[dict]:
    user = await _load_user(db, user_id)
    return [user_to_dict(u) for u in await store.find_many(db, User, store.members(user, "followers"))]


async def get_following(db: AsyncSession, user_id: int) -> list[dict]:
    user = await _load_user(db, user_id)
    return [user_to_dict(u) for u in await store.find_many(db, User, store.members(user, "following"))]


# ---------------------------------------------------------------------------
# Follow graph
# ---------------------------------------------------------------------------

async def follow_user(db: AsyncSession, target_id: int, requester: User) -> tuple[dict, bool]:
    """
    Follow *target_id*. Returns ``(requester, changed)``.

    Following someone already followed reports ``changed`` False and writes
    nothing, unless the target's ``followers`` is missing the mirror entry,
    which is then restored.
    """
    target = await _load_user(db, target_id, for_update=True)
    if target.id == requester.id:
        raise errors.ValidationError("You cannot follow yourself")
    await store.lock(db, requester)
    already = store.contains(requester, "following", target.id)

    store.add_to_set(target, "followers", requester.id)
    store.add_to_set(requester, "following", target.id)
    await db.flush()
    if not already:
        logger.info("User %s now follows %s", requester.id, target.id)
    return user_to_dict(requester), not already


async def unfollow_user(db: AsyncSession, target_id: int, requester: User) -> dict:
    """Remove the follow edge in both directions; missing edges are ignored."""
    target = await _load_user(db, target_id, for_update=True)
    await store.lock(db, requester)
    store.pull(requester, "following", target.id)
    store.pull(target, "followers", requester.id)
    await db.flush()
    return user_to_dict(requester)


async def is_following(db: AsyncSession, target_id: int, requester: User) -> bool:
    target = await _load_user(db, target_id)
    return store.contains(requester, "following", target.id)
