# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


class Settings:
    # ── Catalog API ──────────────────────────────────────────────────────────
    CATALOG_API_URL: str = _rstrip_slash(os.getenv("CATALOG_API_URL", "https://openapi.etsy.com/v3"))
    CATALOG_API_KEY: str = os.getenv("CATALOG_API_KEY", "")
    # Token refresh lives outside this service; we only read the current token
    CATALOG_ACCESS_TOKEN: str = os.getenv("CATALOG_ACCESS_TOKEN", "")
    CATALOG_SHOP_ID: str = os.getenv("CATALOG_SHOP_ID", "")  # empty → resolved via /users/me
    CATALOG_TIMEOUT: float = _get_float("CATALOG_TIMEOUT", 30.0)
    CATALOG_MAX_RETRIES: int = _get_int("CATALOG_MAX_RETRIES", 3)
    CATALOG_RETRY_BASE_DELAY: float = _get_float("CATALOG_RETRY_BASE_DELAY", 1.0)

    # ── Upload / apply pipeline ──────────────────────────────────────────────
    APPLY_BATCH_SIZE: int = _get_int("APPLY_BATCH_SIZE", 5)
    PREFETCH_CONCURRENCY: int = _get_int("PREFETCH_CONCURRENCY", 10)
    BATCH_DELAY_SECONDS: float = _get_float("BATCH_DELAY_SECONDS", 0.2)
    MIN_LISTING_PRICE: float = _get_float("MIN_LISTING_PRICE", 0.20)
    PROGRESS_TTL_DAYS: int = _get_int("PROGRESS_TTL_DAYS", 7)
    MAX_UPLOAD_BYTES: int = _get_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)
    CLEANUP_ON_STARTUP: bool = _get_bool("CLEANUP_ON_STARTUP", True)

    # ── Admin Panel ──────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # ── Paths ────────────────────────────────────────────────────────────────
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    BACKUP_DIR: str = os.getenv("BACKUP_DIR", "") or os.path.join(DATA_DIR, "backups")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "") or f"sqlite+aiosqlite:///{DATA_DIR}/uploads.db"


settings = Settings()
