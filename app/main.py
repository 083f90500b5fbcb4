import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.api import api_router
from app.platform.config import settings
from app.platform.db.session import init_models
from app.platform.exceptions import add_exception_handlers

# Configure logging to show INFO level messages
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DATABASE_URL.startswith("sqlite"):
        # Local runs and tests skip Alembic
        await init_models()
    yield


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Single-page accessibility, SEO and performance analysis",
    version="1.0.0",
    lifespan=lifespan,
)


# Root endpoint for basic info
@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": settings.APP_NAME,
        "description": "Fetches a page once and analyzes it for accessibility, SEO and performance.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(api_router, prefix="/api")
