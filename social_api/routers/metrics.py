from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from social_api.database import get_db
from social_api.models import Comment, Post, User
from social_api.schemas import MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])

@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db)):

    total_users = (await db.execute(select(func.count()).select_from(User))).scalar_one()

    total_posts = (await db.execute(select(func.count()).select_from(Post))).scalar_one()

    total_comments = (await db.execute(select(func.count()).select_from(Comment))).scalar_one()

    # Set sizes live in JSON columns, so they are summed in Python.
    post_likes = (await db.execute(select(Post.likes))).scalars().all()
    following = (await db.execute(select(User.following))).scalars().all()

    avg_comments = total_comments / total_posts if total_posts > 0 else 0

    return MetricsResponse(
        total_users=total_users,
        total_posts=total_posts,
        total_comments=total_comments,
        total_post_likes=sum(len(likes or []) for likes in post_likes),
        total_follow_edges=sum(len(f or []) for f in following),
        avg_comments_per_post=round(avg_comments, 2),
    )
