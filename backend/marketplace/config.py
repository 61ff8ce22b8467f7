from __future__ import annotations

import os
from dataclasses import dataclass


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Production deployments should set real environment variables instead.
    """
    try:
        from dotenv import load_dotenv  # type: ignore

        # Do not override existing environment variables.
        load_dotenv(override=False)
    except Exception:
        return


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


def _env_int(name: str, default: int, *, lo: int | None = None, hi: int | None = None) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        v = int(raw or str(default))
    except Exception:
        v = default
    if lo is not None and v < lo:
        v = lo
    if hi is not None and v > hi:
        v = hi
    return v


def database_url() -> str:
    url = os.environ.get("DATABASE_URL") or "sqlite:///./local.db"
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def jwt_secret() -> str:
    return os.environ.get("JWT_SECRET") or "dev-secret-change-me"


def is_local_dev() -> bool:
    """
    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=api.example.com,example.com
    """
    raw = (os.environ.get("ALLOWED_HOSTS") or "").strip()
    if not raw:
        return ["*"]
    hosts = [h.strip() for h in raw.split(",") if h.strip()]
    return hosts or ["*"]


def cors_origins() -> list[str]:
    raw = (os.environ.get("CORS_ORIGINS") or "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3001",
    ]


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if app_env() in {"prod", "production"}:
        if jwt_secret() == "dev-secret-change-me":
            raise RuntimeError("JWT_SECRET must be set in production (default dev secret detected)")


# -----------------------
# Uploads
# -----------------------
def uploads_dir() -> str:
    return os.environ.get("UPLOADS_DIR") or os.path.join(os.path.dirname(__file__), "..", "uploads")


def upload_base_url() -> str:
    """
    Prefix used when handing relative upload paths back to clients:
    `{upload_base_url}/{relative_path}`.
    """
    return ((os.environ.get("UPLOAD_BASE_URL") or "").strip() or "/uploads").rstrip("/")


def review_dir() -> str:
    return os.path.join(uploads_dir(), "review")


def properties_dir() -> str:
    return os.path.join(uploads_dir(), "properties")


def rejected_dir() -> str:
    return os.path.join(uploads_dir(), "rejected")


# -----------------------
# Buyer interaction limits
# -----------------------
@dataclass(frozen=True)
class InteractionLimits:
    # Combined view_owner + chat_owner attempts allowed per buyer in the window.
    max_attempts: int = 5
    window_hours: int = 12


def interaction_limits() -> InteractionLimits:
    return InteractionLimits(
        max_attempts=_env_int("INTERACTION_MAX_ATTEMPTS", 5, lo=1, hi=1000),
        window_hours=_env_int("INTERACTION_WINDOW_HOURS", 12, lo=1, hi=24 * 30),
    )


# -----------------------
# Image moderation
# -----------------------
@dataclass(frozen=True)
class BlurThresholds:
    # Laplacian variance below `high` is rejected; between `high` and `medium` is accepted
    # (wide-angle / outdoor shots), above `medium` is sharp.
    high: float = 50.0
    medium: float = 100.0


def blur_thresholds() -> BlurThresholds:
    return BlurThresholds(
        high=float(_env_int("HIGH_BLUR_THRESHOLD", 50, lo=0)),
        medium=float(_env_int("MEDIUM_BLUR_THRESHOLD", 100, lo=0)),
    )


def min_image_dimensions() -> tuple[int, int]:
    return (
        _env_int("MIN_IMAGE_WIDTH", 400, lo=1),
        _env_int("MIN_IMAGE_HEIGHT", 300, lo=1),
    )


@dataclass(frozen=True)
class WatermarkSettings:
    text: str = "360coordinates"
    color: tuple[int, int, int] = (255, 255, 255)
    # GD-style alpha: 0 = opaque, 127 = fully transparent.
    opacity: int = 70
    angle: float = -45.0
    max_diagonal_marks: int = 5
    corner_padding: int = 20


def watermark_settings() -> WatermarkSettings:
    return WatermarkSettings(
        text=(os.environ.get("WATERMARK_TEXT") or "").strip() or "360coordinates",
        opacity=_env_int("WATERMARK_OPACITY", 70, lo=0, hi=127),
        angle=float(_env_int("WATERMARK_ANGLE", -45, lo=-360, hi=360)),
    )


# -----------------------
# Seller notifications
# -----------------------
def notify_backend() -> str:
    """
    Notification backend for new-lead alerts:
    - "console" (default): log the payload
    - "webhook": POST JSON to NOTIFY_WEBHOOK_URL
    - "disabled": do nothing
    """
    return (os.environ.get("NOTIFY_BACKEND") or "console").strip().lower()


def notify_webhook_url() -> str:
    return (os.environ.get("NOTIFY_WEBHOOK_URL") or "").strip()


def notify_timeout_seconds() -> int:
    return _env_int("NOTIFY_TIMEOUT_SECONDS", 5, lo=1, hi=60)
