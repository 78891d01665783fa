import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from social_api.config import settings
from social_api.database import init_db
from social_api.errors import install_error_handlers
from social_api.middleware import TimingMiddleware
from social_api.routers import comments, metrics, posts, users

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Social API (env=%s)", settings.APP_ENV)
    await init_db()
    yield
    logger.info("Shutting down")


app = FastAPI(
    title="Social API",
    description="Users, posts, comments, likes and follows over a document-style store",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)

# Routers
app.include_router(users.router)
app.include_router(posts.router)
app.include_router(comments.router)
app.include_router(metrics.router)

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
