import logging
import tomllib
from contextlib import asynccontextmanager

import setproctitle

import settings
from fastapi import FastAPI, APIRouter
from sqlmodel import SQLModel

from models.common import get_engine
from routes.connection_route import router as connection_router
from routes.profile_route import router as profile_router
from services.change_feed import change_feed
from settings import PROJECT_PATH
from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware

from utils.logs import setup_logs

logger = logging.getLogger("ideacollab.main")
setup_logs()
setproctitle.setproctitle("IdeaCollabHub API")


def get_version() -> str:
    """Read version from pyproject.toml"""

    with open(PROJECT_PATH / "pyproject.toml", "rb") as f:
        pyproject = tomllib.load(f)
    return pyproject["project"]["version"]


def update_database():  # pragma: no cover
    """Create the missing tables"""
    try:
        SQLModel.metadata.create_all(get_engine())
    except Exception as e:
        logger.exception(f"Cannot create the DB tables: {e}")
        raise


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI app"""
    logger.debug("Starting...")
    update_database()
    yield
    change_feed.close_all()
    logger.debug("Closing app")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""

    app = FastAPI(
        title="IdeaCollabHub",
        description="Connection requests between members, with a realtime feed",
        version=get_version(),
        middleware=[
            Middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET_KEY),
        ],
        swagger_ui_parameters={
            "defaultModelsExpandDepth": 0,
        },  # collapse the swagger schema
        lifespan=app_lifespan,
    )

    # Mount routers
    api_router = APIRouter()
    api_router.include_router(connection_router, tags=["connections"])
    api_router.include_router(profile_router, tags=["profiles"])
    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app
