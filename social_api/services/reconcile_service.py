"""
Reconciliation pass over the back-reference sets.

The workflows keep references consistent within one request, but rows
written before a crash, by older code or by hand can still disagree. This
pass rebuilds every set from the data that owns it:

- ids pointing at missing rows are dropped;
- duplicates are collapsed (first occurrence kept);
- a user never appears in their own ``followers`` / ``following``;
- half-written follow edges get their missing mirror side;
- ``posts`` / ``comments`` on a user and ``comments`` on a post are
  completed from the ``user_id`` / ``post_id`` columns;
- ``likes`` and ``liked_posts`` / ``liked_comments`` are made symmetric.

Only sets that actually change are rewritten.
"""
import logging
from collections import Counter, defaultdict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from social_api.models import Comment, Post, User

logger = logging.getLogger(__name__)


def _dedupe(values: list, allowed: set) -> list:
    seen: set = set()
    out = []
    for v in values or []:
        if v in allowed and v not in seen:
            seen.add(v)
            out.append(v)
    return out


def _with(values: list, extra) -> list:
    """Return *values* with every id in *extra* appended if missing."""
    out = list(values)
    for v in sorted(extra):
        if v not in out:
            out.append(v)
    return out


async def repair_back_references(db: AsyncSession, dry_run: bool = False) -> dict[str, int]:
    """
    Repair every back-reference set.

    Returns a report mapping ``"<table>.<field>"`` to the number of rows
    rewritten. With *dry_run* the report is computed and nothing is written.
    """
    users = {u.id: u for u in (await db.execute(select(User))).scalars().all()}
    posts = {p.id: p for p in (await db.execute(select(Post))).scalars().all()}
    comments = {c.id: c for c in (await db.execute(select(Comment))).scalars().all()}

    report: Counter = Counter()
    pending: list[tuple[object, str, list]] = []

    def stage(doc, table: str, field: str, new: list) -> None:
        if list(getattr(doc, field) or []) != new:
            report[f"{table}.{field}"] += 1
            pending.append((doc, field, new))

    # Ownership comes from the user_id / post_id columns, never from the sets.
    posts_of: dict[int, set] = defaultdict(set)
    comments_of: dict[int, set] = defaultdict(set)
    post_comments: dict[int, set] = defaultdict(set)
    for pid, post in posts.items():
        posts_of[post.user_id].add(pid)
    for cid, comment in comments.items():
        comments_of[comment.user_id].add(cid)
        post_comments[comment.post_id].add(cid)

    # Clean sets first so the mirror computations below see valid ids only.
    clean: dict[tuple[str, int, str], list] = {}
    for uid, user in users.items():
        others = set(users) - {uid}
        clean["users", uid, "posts"] = _dedupe(user.posts, posts_of[uid])
        clean["users", uid, "comments"] = _dedupe(user.comments, comments_of[uid])
        clean["users", uid, "liked_posts"] = _dedupe(user.liked_posts, set(posts))
        clean["users", uid, "liked_comments"] = _dedupe(user.liked_comments, set(comments))
        clean["users", uid, "followers"] = _dedupe(user.followers, others)
        clean["users", uid, "following"] = _dedupe(user.following, others)
    for pid, post in posts.items():
        clean["posts", pid, "likes"] = _dedupe(post.likes, set(users))
        clean["posts", pid, "comments"] = _dedupe(post.comments, post_comments[pid])
    for cid, comment in comments.items():
        clean["comments", cid, "likes"] = _dedupe(comment.likes, set(users))

    # Mirror sides implied by the other half of each edge.
    followers_of: dict[int, set] = defaultdict(set)
    following_of: dict[int, set] = defaultdict(set)
    liked_posts_of: dict[int, set] = defaultdict(set)
    liked_comments_of: dict[int, set] = defaultdict(set)
    post_likers: dict[int, set] = defaultdict(set)
    comment_likers: dict[int, set] = defaultdict(set)

    for uid in users:
        for target in clean["users", uid, "following"]:
            followers_of[target].add(uid)
        for follower in clean["users", uid, "followers"]:
            following_of[follower].add(uid)
        for pid in clean["users", uid, "liked_posts"]:
            post_likers[pid].add(uid)
        for cid in clean["users", uid, "liked_comments"]:
            comment_likers[cid].add(uid)
    for pid, post in posts.items():
        for uid in clean["posts", pid, "likes"]:
            liked_posts_of[uid].add(pid)
    for cid, comment in comments.items():
        for uid in clean["comments", cid, "likes"]:
            liked_comments_of[uid].add(cid)

    for uid, user in users.items():
        stage(user, "users", "posts", _with(clean["users", uid, "posts"], posts_of[uid]))
        stage(user, "users", "comments", _with(clean["users", uid, "comments"], comments_of[uid]))
        stage(user, "users", "liked_posts", _with(clean["users", uid, "liked_posts"], liked_posts_of[uid]))
        stage(
            user, "users", "liked_comments",
            _with(clean["users", uid, "liked_comments"], liked_comments_of[uid]),
        )
        stage(user, "users", "followers", _with(clean["users", uid, "followers"], followers_of[uid]))
        stage(user, "users", "following", _with(clean["users", uid, "following"], following_of[uid]))
    for pid, post in posts.items():
        stage(post, "posts", "likes", _with(clean["posts", pid, "likes"], post_likers[pid]))
        stage(post, "posts", "comments", _with(clean["posts", pid, "comments"], post_comments[pid]))
    for cid, comment in comments.items():
        stage(comment, "comments", "likes", _with(clean["comments", cid, "likes"], comment_likers[cid]))

    if not dry_run:
        for doc, field, new in pending:
            setattr(doc, field, new)
        await db.flush()

    logger.info(
        "Reconciliation %s: %d set(s) %s",
        "dry run" if dry_run else "complete",
        len(pending),
        "need repair" if dry_run else "repaired",
    )
    return dict(report)
