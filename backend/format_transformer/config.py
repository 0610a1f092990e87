"""Application configuration. Loads from environment and .env file."""
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
PROJECT_DIR = BASE_DIR.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(PROJECT_DIR / ".env")

# Paths (override with env)
STAGING_DIR = Path(os.getenv("STAGING_DIR", str(BASE_DIR / "staging")))
TEMP_DIR = Path(os.getenv("TEMP_DIR", tempfile.gettempdir()))
BIN_DIR = Path(os.getenv("BIN_DIR", str(PROJECT_DIR / "bin")))
STAGING_DIR.mkdir(parents=True, exist_ok=True)

# External tools. The image tool and the document suite are looked up on PATH;
# the transcoder is resolved per task (bundled copy first, then FFMPEG_PATH).
MAGICK_BINARY = os.getenv("MAGICK_BINARY", "magick")
SOFFICE_BINARY = os.getenv("SOFFICE_BINARY", "soffice")
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "").strip()
LIBREOFFICE_PATH = os.getenv("LIBREOFFICE_PATH", "").strip()

if sys.platform == "win32":
    SOFFICE_CANDIDATES = [
        os.path.join(os.getenv("PROGRAMFILES", r"C:\Program Files"), "LibreOffice", "program", "soffice.exe"),
        os.path.join(os.getenv("PROGRAMFILES(X86)", r"C:\Program Files (x86)"), "LibreOffice", "program", "soffice.exe"),
    ]
elif sys.platform == "darwin":
    SOFFICE_CANDIDATES = ["/Applications/LibreOffice.app/Contents/MacOS/soffice"]
else:
    SOFFICE_CANDIDATES = [
        "/usr/bin/libreoffice",
        "/usr/bin/soffice",
        "/usr/local/bin/soffice",
        "/snap/bin/libreoffice",
        "/opt/libreoffice/program/soffice",
    ]
if LIBREOFFICE_PATH:
    SOFFICE_CANDIDATES.insert(0, LIBREOFFICE_PATH)


def resolve_ffmpeg_path() -> Optional[str]:
    """Bundled bin/ffmpeg, then FFMPEG_PATH, then PATH. None when nothing is found."""
    bundled = BIN_DIR / ("ffmpeg.exe" if sys.platform == "win32" else "ffmpeg")
    if bundled.is_file():
        return str(bundled)
    if FFMPEG_PATH and Path(FFMPEG_PATH).is_file():
        return FFMPEG_PATH
    return shutil.which("ffmpeg")


# Target formats offered per category
FORMAT_MAP = {
    "images": ["png", "jpg", "jpeg", "gif", "bmp", "webp", "svg", "ico"],
    "videos": ["mp4", "avi", "mkv", "mov", "flv", "webm", "wmv"],
    "audio": ["mp3", "wav", "flac", "aac", "ogg", "m4a", "wma"],
    "documents": ["pdf", "docx", "doc", "xlsx", "xls", "pptx", "ppt", "txt"],
}

# Conversion options (env overrides)
DEFAULT_IMAGE_QUALITY = int(os.getenv("DEFAULT_IMAGE_QUALITY", "90"))
JPEG_FORMATS = {"jpg", "jpeg", "jpe", "jfif"}
ICO_SIZE_CHOICES = [16, 24, 32, 48, 64, 128, 256]
VIDEO_PRESETS = ["ultrafast", "veryfast", "fast", "medium", "slow", "veryslow"]
# Codec hints per container: (video codec, audio codec)
VIDEO_CODEC_HINTS = {
    "mp4": ("libx264", "aac"),
    "webm": ("libvpx-vp9", "libopus"),
}

# Concurrency
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(8, (os.cpu_count() or 2)))))
MP_START_METHOD = os.getenv("MP_START_METHOD", "spawn")
WORKER_POLL_INTERVAL = float(os.getenv("WORKER_POLL_INTERVAL", "0.2"))
WORKER_JOIN_TIMEOUT = float(os.getenv("WORKER_JOIN_TIMEOUT", "5"))

# Uploads (dropped files are staged before conversion)
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "500"))
MAX_UPLOAD_SIZE_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024

# Database – conversion history. SQLite by default.
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
    db_path = BASE_DIR / "data" / "transformer.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    DATABASE_URL = f"sqlite:///{db_path}"

# Server (for uvicorn)
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("transformer")
