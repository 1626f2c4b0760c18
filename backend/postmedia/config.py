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

# Accepted input (declared MIME types)
ACCEPTED_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")
OUTPUT_FORMATS = ("webp", "jpeg", "png")

# Input ceiling, independent of any output budget
MAX_INPUT_SIZE_MB = int(os.getenv("MAX_INPUT_SIZE_MB", "10"))
MAX_INPUT_SIZE_BYTES = MAX_INPUT_SIZE_MB * 1024 * 1024
# Largest HTML field accepted by the document endpoint (inline data: images count toward it)
MAX_DOCUMENT_SIZE_MB = int(os.getenv("MAX_DOCUMENT_SIZE_MB", "50"))
MAX_DOCUMENT_SIZE_BYTES = MAX_DOCUMENT_SIZE_MB * 1024 * 1024
MAX_DOCUMENT_FILES = int(os.getenv("MAX_DOCUMENT_FILES", "100"))

# Transcode defaults (env overrides). Quality is 0-1 as the editor sends it.
DEFAULT_MAX_WIDTH = int(os.getenv("DEFAULT_MAX_WIDTH", "1920"))
DEFAULT_MAX_HEIGHT = int(os.getenv("DEFAULT_MAX_HEIGHT", "1080"))
DEFAULT_QUALITY = float(os.getenv("DEFAULT_QUALITY", "0.85"))
DEFAULT_MAX_OUTPUT_KB = int(os.getenv("DEFAULT_MAX_OUTPUT_KB", "500"))
WEBP_METHOD = int(os.getenv("WEBP_METHOD", "6"))
QUALITY_STEP = 0.1
QUALITY_FLOOR = 0.1

# In-content (rich text) images
CONTENT_MAX_WIDTH = int(os.getenv("CONTENT_MAX_WIDTH", "1200"))
CONTENT_MAX_HEIGHT = int(os.getenv("CONTENT_MAX_HEIGHT", "800"))
CONTENT_QUALITY = float(os.getenv("CONTENT_QUALITY", "0.85"))
CONTENT_MAX_OUTPUT_KB = int(os.getenv("CONTENT_MAX_OUTPUT_KB", "500"))

# Batch timing (seconds unless noted)
DEREFERENCE_TIMEOUT = float(os.getenv("DEREFERENCE_TIMEOUT", "10"))
UPLOAD_TIMEOUT = float(os.getenv("UPLOAD_TIMEOUT", "30"))
BATCH_ITEM_DELAY_MS = int(os.getenv("BATCH_ITEM_DELAY_MS", "500"))

# Storage. Supabase when both URL and key are set, local filesystem otherwise.
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "").strip()
STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(BASE_DIR / "media")))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000/media").rstrip("/")
CONTENT_BUCKET = os.getenv("CONTENT_BUCKET", "blog-images")
AVATAR_BUCKET = os.getenv("AVATAR_BUCKET", "user-avatars")
COVER_BUCKET = os.getenv("COVER_BUCKET", "avatar-cover")
STORAGE_DIR.mkdir(parents=True, exist_ok=True)

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("postmedia")


def parse_failed_reference_policy(value: str) -> str:
    """
    "keep" leaves failed blob:/data: references in the HTML, "strip" removes
    their <img> tags. Anything else falls back to "keep" with a warning.
    """
    policy = (value or "").strip().lower()
    if policy in ("keep", "strip"):
        return policy
    logger.warning("Invalid FAILED_REFERENCE_POLICY %r (expected 'keep' or 'strip'), using 'keep'", value)
    return "keep"


FAILED_REFERENCE_POLICY = parse_failed_reference_policy(os.getenv("FAILED_REFERENCE_POLICY", "keep"))
