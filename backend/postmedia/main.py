"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from postmedia.api.routes import router
from postmedia.config import CORS_ORIGINS, STORAGE_DIR, logger as config_logger
from postmedia.storage import build_storage

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own storage before startup
    if getattr(app.state, "storage", None) is None:
        app.state.storage = build_storage()
    config_logger.info("Media API started (%s)", type(app.state.storage).__name__)
    yield
    await app.state.storage.aclose()
    config_logger.info("Media API shutting down")


app = FastAPI(
    title="Blog Media API",
    description="Transcode blog images to WebP and upload avatars, covers and in-post images.",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.storage = None
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)
# Local storage objects are public at PUBLIC_BASE_URL (default http://host/media)
app.mount("/media", StaticFiles(directory=str(STORAGE_DIR)), name="media")


if __name__ == "__main__":
    import uvicorn
    from postmedia.config import HOST, PORT
    uvicorn.run("postmedia.main:app", host=HOST, port=PORT, reload=True)
