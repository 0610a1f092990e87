"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from format_transformer.api.routes import router
from format_transformer.config import CORS_ORIGINS, logger as config_logger
from format_transformer.conversion.service import shutdown_conversion_service
from format_transformer.db import init_db
from format_transformer.staging import cleanup_stale

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    cleanup_stale()
    config_logger.info("Format Transformer API started")
    yield
    # Kills workers still converting so no ffmpeg/soffice process outlives the app
    shutdown_conversion_service()
    config_logger.info("Format Transformer API shutting down")


app = FastAPI(
    title="Format Transformer API",
    description="Convert images, video, audio and documents through ImageMagick, FFmpeg and LibreOffice.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


def run():
    import uvicorn
    from format_transformer.config import HOST, PORT
    uvicorn.run("format_transformer.main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    run()
