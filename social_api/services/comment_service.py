"""
Comment service — comments on posts.

A Comment is listed in its post's ``comments`` set and its author's
``comments`` set; likers hold it in ``liked_comments``. Every write below
updates the comment row first and the back-references after.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from social_api import errors, store
from social_api.models import Comment, Post, User
from social_api.schemas import CommentCreate, CommentResponse, CommentUpdate

logger = logging.getLogger(__name__)


def comment_to_dict(comment: Comment) -> dict:
    return CommentResponse(
        id=comment.id,
        user_id=comment.user_id,
        post_id=comment.post_id,
        content=comment.content,
        likes=store.members(comment, "likes"),
        created_at=comment.created_at,
        updated_at=comment.updated_at,
    ).model_dump(mode="json")


async def _load_comment(db: AsyncSession, comment_id: int, for_update: bool = False) -> Comment:
    comment = await store.find_by_id(db, Comment, comment_id, for_update=for_update)
    if comment is None:
        raise errors.NotFound("Comment not found")
    return comment


async def _load_authored_comment(db: AsyncSession, comment_id: int, requester: User) -> Comment:
    comment = await _load_comment(db, comment_id, for_update=True)
    if comment.user_id != requester.id:
        raise errors.Forbidden("You are not the author of this comment")
    return comment


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_post_comments(db: AsyncSession, post_id: int) -> list[dict]:
    post = await store.find_by_id(db, Post, post_id)
    if post is None:
        raise errors.NotFound("Post not found")
    comments = await store.find_many(db, Comment, store.members(post, "comments"))
    return [comment_to_dict(c) for c in comments]


async def get_user_comments(db: AsyncSession, user_id: int) -> list[dict]:
    if await store.find_by_id(db, User, user_id) is None:
        raise errors.NotFound("User not found")
    q = select(Comment).where(Comment.user_id == user_id).order_by(Comment.id)
    return [comment_to_dict(c) for c in (await db.execute(q)).scalars().all()]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_comment(
    db: AsyncSession, post_id: int, requester: User, data: CommentCreate
) -> dict:
    """Create a comment on *post_id* and record it on the post and the author."""
    post = await store.find_by_id(db, Post, post_id, for_update=True)
    if post is None:
        raise errors.NotFound("Post not found")
    await store.lock(db, requester)

    comment = Comment(post_id=post.id, user_id=requester.id, content=data.content, likes=[])
    db.add(comment)
    await db.flush()

    store.add_to_set(post, "comments", comment.id)
    store.add_to_set(requester, "comments", comment.id)
    await db.flush()

    logger.info("Comment %s added to post %s by user %s", comment.id, post.id, requester.id)
    return comment_to_dict(comment)


async def update_comment(
    db: AsyncSession, comment_id: int, requester: User, data: CommentUpdate
) -> dict:
    comment = await _load_authored_comment(db, comment_id, requester)
    comment.content = data.content
    await db.flush()
    return comment_to_dict(comment)


async def delete_comment(db: AsyncSession, comment_id: int, requester: User) -> dict:
    """Delete a comment authored by *requester* and pull it from both owners."""
    comment = await _load_authored_comment(db, comment_id, requester)
    snapshot = comment_to_dict(comment)

    await store.delete_one(db, comment)

    post = await store.find_by_id(db, Post, comment.post_id, for_update=True)
    if post is not None:
        store.pull(post, "comments", comment.id)
    await store.lock(db, requester)
    store.pull(requester, "comments", comment.id)
    await store.pull_everywhere(db, User, "liked_comments", comment.id)
    await db.flush()

    logger.info("Comment %s deleted", comment.id)
    return snapshot


async def like_comment(db: AsyncSession, comment_id: int, requester: User) -> tuple[dict, bool]:
    """
    Like a comment. Returns ``(comment, changed)``.

    A repeat like writes nothing beyond restoring a missing mirror entry in
    the requester's ``liked_comments``.
    """
    comment = await _load_comment(db, comment_id, for_update=True)
    await store.lock(db, requester)
    already = store.contains(comment, "likes", requester.id)

    store.add_to_set(comment, "likes", requester.id)
    store.add_to_set(requester, "liked_comments", comment.id)
    await db.flush()
    return comment_to_dict(comment), not already


async def unlike_comment(db: AsyncSession, comment_id: int, requester: User) -> dict:
    comment = await _load_comment(db, comment_id, for_update=True)
    await store.lock(db, requester)
    store.pull(comment, "likes", requester.id)
    store.pull(requester, "liked_comments", comment.id)
    await db.flush()
    return comment_to_dict(comment)
