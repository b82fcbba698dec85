"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Temp artifacts (served under /temp, evicted after TEMP_RETENTION_SECONDS)
TEMP_DIR = Path(os.getenv("TEMP_DIR", str(BASE_DIR / "temp")))
TEMP_DIR.mkdir(parents=True, exist_ok=True)
TEMP_URL_PREFIX = "/temp"
TEMP_RETENTION_SECONDS = int(os.getenv("TEMP_RETENTION_SECONDS", str(10 * 60)))
CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", str(5 * 60)))

# Upload limits
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "10"))
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024
MAX_FILES_PER_BATCH = int(os.getenv("MAX_FILES_PER_BATCH", "50"))

ALLOWED_UPLOAD_MIME_TYPES = {
    "image/jpeg", "image/jpg", "image/png", "image/webp",
    "image/gif", "image/bmp", "image/tiff", "image/svg+xml",
    "image/x-icon", "image/vnd.microsoft.icon", "image/avif",
}
# Decoded formats accepted from remote URLs ("mpo" is multi-picture JPEG)
ALLOWED_SOURCE_FORMATS = {"jpeg", "jpg", "mpo", "png", "webp", "gif", "bmp", "tiff", "avif"}

# URL download
URL_FETCH_TIMEOUT = int(os.getenv("URL_FETCH_TIMEOUT", "30"))
URL_FETCH_MAX_MB = int(os.getenv("URL_FETCH_MAX_MB", str(MAX_FILE_SIZE_MB)))
URL_FETCH_MAX_BYTES = URL_FETCH_MAX_MB * 1024 * 1024
URL_FETCH_USER_AGENT = "Image-Processing-API/1.0"

# Conversion defaults
DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "80"))

# Preset sizes (name -> (width, height))
PRESET_SIZES = {
    "square-small": (512, 512),
    "square-large": (1024, 1024),
    "portrait-small": (512, 768),
    "portrait-large": (768, 1024),
    "landscape-small": (768, 512),
    "landscape-large": (1024, 768),
    "facebook": (1200, 630),
    "instagram": (1080, 1080),
    "twitter": (1200, 675),
    "linkedin": (1200, 627),
}

# Concurrency (batch items fan out on a thread pool)
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(32, (os.cpu_count() or 4) + 4))))

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3005"))
# CORS: comma-separated origins, "*" for any
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("imageproc")
