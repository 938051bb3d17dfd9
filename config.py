import html
import os

from dotenv import load_dotenv

# ------------------------------------------------------------------------------------------------
# Required env vars: SECRET_KEY, DB_URL (or DATABASE_URL / DATABASE_INTERNAL_URL)
# ------------------------------------------------------------------------------------------------
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _resolve_db_url() -> str:
    raw = (
        os.getenv("DB_URL")
        or os.getenv("DATABASE_URL")
        or os.getenv("DATABASE_INTERNAL_URL")
        or ""
    ).strip()
    if not raw:
        raise RuntimeError(
            "DB_URL is required (no hardcoded defaults). "
            "Set DB_URL or DATABASE_URL or DATABASE_INTERNAL_URL."
        )
    raw = html.unescape(raw)
    # Normalize legacy postgres:// scheme
    if raw.startswith("postgres://"):
        raw = raw.replace("postgres://", "postgresql+psycopg2://", 1)
    return raw


DB_URL = _resolve_db_url()

SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    raise RuntimeError("SECRET_KEY is required.")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

API_PREFIX = "/" + os.getenv("API_PREFIX", "/api/data").strip().strip("/")
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "500"))
SOFT_DELETE = _env_bool("SOFT_DELETE", "false")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SEED_DEFAULT_USER = _env_bool("SEED_DEFAULT_USER", "true")
DEFAULT_ADMIN_USERNAME = os.getenv("DEFAULT_ADMIN_USERNAME", "admin")
DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "")
