"""
Post service — the Post aggregate and its back-references.

Design notes
------------
- A Post is referenced from its owner's ``posts`` set, from every liker's
  ``liked_posts`` set, and owns the ``post_id`` of its Comments. The
  workflows below keep those references in step; the database does not.
- Media-store calls run before (create/edit) or alongside (delete) the
  database writes and are never part of the transaction. Upload failures
  drop the item; delete failures are logged and ignored.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency, so a failure anywhere in a workflow
  rolls back every database write it made.
- Every set a workflow rewrites is read under a row lock first
  (``for_update=True`` or ``store.lock``), so concurrent requests touching
  the same row queue up instead of overwriting each other.
"""
import logging
import math
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import errors, store
from social_api.media import MediaStore, delete_all, upload_all
from social_api.models import Comment, Post, User
from social_api.schemas import PaginatedResponse, PostCreate, PostResponse, PostUpdate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def post_to_dict(post: Post) -> dict:
    """Serialise a Post ORM instance to a plain JSON-ready dict."""
    return PostResponse(
        id=post.id,
        user_id=post.user_id,
        title=post.title,
        content=post.content,
        photos=store.members(post, "photos"),
        videos=store.members(post, "videos"),
        likes=store.members(post, "likes"),
        comments=store.members(post, "comments"),
        created_at=post.created_at,
        updated_at=post.updated_at,
    ).model_dump(mode="json")


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

async def _load_post(db: AsyncSession, post_id: int, for_update: bool = False) -> Post:
    post = await store.find_by_id(db, Post, post_id, for_update=for_update)
    if post is None:
        raise errors.NotFound("Post not found")
    return post


async def _load_owned_post(db: AsyncSession, post_id: int, requester: User) -> Post:
    post = await _load_post(db, post_id, for_update=True)
    if post.user_id != requester.id:
        raise errors.Forbidden("You are not the owner of this post")
    return post


def _media_ids(items: list[dict]) -> list[str]:
    return [item["media_id"] for item in items if item.get("media_id")]


async def _upload(media: MediaStore, paths: list[Path]) -> list[dict]:
    batch = await upload_all(media, paths)
    if batch.failed:
        logger.warning("%d of %d uploads dropped", len(batch.failed), len(paths))
    return [item.to_dict() for item in batch.succeeded]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_posts(db: AsyncSession, page: int = 1, page_size: int = 20) -> PaginatedResponse:
    """Return a page of posts, newest first."""
    total: int = (await db.execute(select(func.count()).select_from(Post))).scalar_one()
    q = (
        select(Post)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    posts = (await db.execute(q)).scalars().all()
    return PaginatedResponse(
        items=[post_to_dict(p) for p in posts],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


async def get_post(db: AsyncSession, post_id: int) -> dict:
    return post_to_dict(await _load_post(db, post_id))


async def get_user_posts(db: AsyncSession, user_id: int) -> list[dict]:
    """Posts authored by *user_id*, newest first."""
    if await store.find_by_id(db, User, user_id) is None:
        raise errors.NotFound("User not found")
    q = select(Post).where(Post.user_id == user_id).order_by(Post.created_at.desc(), Post.id.desc())
    return [post_to_dict(p) for p in (await db.execute(q)).scalars().all()]


async def get_liked_posts(db: AsyncSession, user_id: int) -> list[dict]:
    """Posts listed in the ``liked_posts`` set of *user_id*."""
    user = await store.find_by_id(db, User, user_id)
    if user is None:
        raise errors.NotFound("User not found")
    posts = await store.find_many(db, Post, store.members(user, "liked_posts"))
    return [post_to_dict(p) for p in posts]


# ---------------------------------------------------------------------------
# Create / edit
# ---------------------------------------------------------------------------

async def create_post(
    db: AsyncSession,
    media: MediaStore,
    owner: User,
    data: PostCreate,
    photos: list[Path] | None = None,
    videos: list[Path] | None = None,
) -> dict:
    """
    Upload the staged media, create the Post, then record it on the owner.

    Individual upload failures are not fatal: the post is created with the
    media that made it.
    """
    photo_items = await _upload(media, photos or [])
    video_items = await _upload(media, videos or [])

    post = Post(
        user_id=owner.id,
        title=data.title,
        content=data.content,
        photos=photo_items,
        videos=video_items,
        likes=[],
        comments=[],
    )
    db.add(post)
    await db.flush()

    await store.lock(db, owner)
    store.add_to_set(owner, "posts", post.id)
    await db.flush()

    logger.info(
        "Post %s created by user %s (%d photos, %d videos)",
        post.id, owner.id, len(photo_items), len(video_items),
    )
    return post_to_dict(post)


async def update_post(
    db: AsyncSession,
    media: MediaStore,
    post_id: int,
    requester: User,
    data: PostUpdate,
    photos: list[Path] | None = None,
    videos: list[Path] | None = None,
) -> dict:
    """
    Edit a post owned by *requester*.

    Supplying photos (or videos) replaces the whole list of that kind: every
    existing item is released from the media store before the new files are
    uploaded. A kind that is not supplied is kept as is.
    """
    post = await _load_owned_post(db, post_id, requester)

    if photos:
        released = await delete_all(media, _media_ids(store.members(post, "photos")))
        if not released.ok:
            logger.warning("Post %s: %d old photos not released", post.id, len(released.failed))
        post.photos = await _upload(media, photos)

    if videos:
        released = await delete_all(media, _media_ids(store.members(post, "videos")))
        if not released.ok:
            logger.warning("Post %s: %d old videos not released", post.id, len(released.failed))
        post.videos = await _upload(media, videos)

    if data.title is not None:
        post.title = data.title
    if data.content is not None:
        post.content = data.content

    await db.flush()
    logger.info("Post %s updated", post.id)
    return post_to_dict(post)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

async def purge_post(db: AsyncSession, media: MediaStore, post: Post) -> dict:
    """
    Remove *post* and every reference to it.

    Releases its media, deletes its comments, and pulls the post and comment
    ids from every user's ``posts``, ``comments``, ``liked_posts`` and
    ``liked_comments`` sets. Also used when an account is deleted.
    """
    snapshot = post_to_dict(post)

    released = await delete_all(
        media, _media_ids(store.members(post, "photos") + store.members(post, "videos"))
    )
    if not released.ok:
        logger.warning("Post %s: %d media items not released", post.id, len(released.failed))

    comment_ids = await store.delete_where(db, Comment, Comment.post_id == post.id)
    await store.delete_one(db, post)

    for user in await store.find_all(db, User, for_update=True):
        store.pull(user, "posts", post.id)
        store.pull(user, "liked_posts", post.id)
        if comment_ids:
            store.pull_all(user, "comments", comment_ids)
            store.pull_all(user, "liked_comments", comment_ids)
    await db.flush()

    logger.info("Post %s deleted with %d comments", post.id, len(comment_ids))
    return snapshot


async def delete_post(db: AsyncSession, media: MediaStore, post_id: int, requester: User) -> dict:
    """Delete a post owned by *requester*; returns the deleted post."""
    post = await _load_owned_post(db, post_id, requester)
    return await purge_post(db, media, post)


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------

async def like_post(db: AsyncSession, post_id: int, requester: User) -> tuple[dict, bool]:
    """
    Like a post. Returns ``(post, changed)``.

    When the requester already likes the post ``changed`` is False and
    nothing is written, unless the requester's ``liked_posts`` is missing
    the mirror entry, which is then restored.
    """
    post = await _load_post(db, post_id, for_update=True)
    await store.lock(db, requester)
    already = store.contains(post, "likes", requester.id)

    store.add_to_set(post, "likes", requester.id)
    store.add_to_set(requester, "liked_posts", post.id)
    await db.flush()
    return post_to_dict(post), not already


async def unlike_post(db: AsyncSession, post_id: int, requester: User) -> dict:
    post = await _load_post(db, post_id, for_update=True)
    await store.lock(db, requester)
    store.pull(post, "likes", requester.id)
    store.pull(requester, "liked_posts", post.id)
    await db.flush()
    return post_to_dict(post)


async def is_liked(db: AsyncSession, post_id: int, requester: User) -> bool:
    post = await _load_post(db, post_id)
    return store.contains(post, "likes", requester.id)
