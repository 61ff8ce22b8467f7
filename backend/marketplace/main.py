from __future__ import annotations

import logging
import os
import re
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from marketplace import leads, moderation
from marketplace.config import allowed_hosts, cors_origins, enforce_secure_secrets, properties_dir, rejected_dir, review_dir, uploads_dir
from marketplace.db import session_scope
from marketplace.models import User
from marketplace.rate_limit import InteractionLimiter, InvalidInteraction, QuotaExceeded, StorageUnavailable, limiter
from marketplace.security import decode_access_token
from marketplace.utils.files import ensure_dir

logger = logging.getLogger(__name__)

app = FastAPI(title="Marketplace Interactions & Moderation API")

# Production hardening: ensure we don't run with dangerous defaults.
enforce_secure_secrets()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    return resp


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------
# Response envelope
# -----------------------
def _ok(message: str, data: Any = None) -> dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def _error(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, "data": data})


@app.exception_handler(StarletteHTTPException)
async def _http_error(request, exc: StarletteHTTPException):
    # `detail` is either a plain message or {"message": ..., "data": ...}.
    detail = exc.detail
    if isinstance(detail, dict):
        resp = _error(exc.status_code, str(detail.get("message") or ""), detail.get("data"))
    else:
        resp = _error(exc.status_code, str(detail or ""))
    for k, v in (getattr(exc, "headers", None) or {}).items():
        resp.headers[k] = v
    return resp


@app.exception_handler(RequestValidationError)
async def _validation_error(request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in (first.get("loc") or ())[1:])
    msg = str(first.get("msg") or "Invalid request")
    return _error(400, f"{field}: {msg}" if field else msg)


@app.exception_handler(SQLAlchemyError)
async def _storage_error(request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error(500, "Storage unavailable")


# -----------------------
# Startup
# -----------------------
@app.on_event("startup")
def ensure_upload_dirs() -> None:
    for path in (uploads_dir(), review_dir(), properties_dir(), rejected_dir()):
        if not ensure_dir(path):
            logger.warning("Upload directory unavailable: %s", path)


@app.get("/uploads/{path:path}", include_in_schema=False)
def uploads_proxy(path: str):
    """
    Serve locally-stored uploads from disk.

    Stale rows may reference files that no longer exist (ephemeral disks);
    return 204 for those instead of a noisy 404.
    """
    rel = (path or "").lstrip("/").replace("\\", "/")
    if not rel:
        return Response(status_code=204)
    base = os.path.realpath(uploads_dir())
    target = os.path.realpath(os.path.join(base, rel))
    if not target.startswith(base + os.sep):
        return Response(status_code=204)
    if os.path.isfile(target):
        return FileResponse(target)
    return Response(status_code=204)


# -----------------------
# Dependencies
# -----------------------
def get_db():
    with session_scope() as db:
        yield db


def get_limiter() -> InteractionLimiter:
    return limiter


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub") or 0)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if (user.status or "").lower() == "suspended":
        raise HTTPException(status_code=403, detail="Account disabled")
    return user


def require_role(*roles: str):
    allowed = {r.lower() for r in roles}

    def _dep(me: Annotated[User, Depends(get_current_user)]) -> User:
        if (me.role or "").lower() not in allowed:
            raise HTTPException(status_code=403, detail="Access denied")
        return me

    return _dep


BuyerUser = Annotated[User, Depends(require_role("buyer"))]
SellerUser = Annotated[User, Depends(require_role("seller", "agent"))]
AdminUser = Annotated[User, Depends(require_role("admin"))]
DbSession = Annotated[Session, Depends(get_db)]
Limiter = Annotated[InteractionLimiter, Depends(get_limiter)]


@app.get("/health")
def health():
    return {"ok": True}


# -----------------------
# Buyer interactions
# -----------------------
class RecordInteractionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Presence is checked by the limiter so callers get the same messages as before.
    property_id: int | None = None
    action_type: str | None = None


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _query_int(raw: str | None) -> int:
    # Echo-only query values: leading digits win, anything else is 0.
    m = _LEADING_INT.match(raw or "")
    return int(m.group(1)) if m else 0


@app.get("/buyer/interactions/check")
def check_interactions(
    me: BuyerUser,
    db: DbSession,
    rate_limiter: Limiter,
    property_id: str = Query(default=""),
    action_type: str = Query(default=""),
):
    try:
        snap = rate_limiter.check(db, me.id)
    except StorageUnavailable:
        logger.exception("Quota check failed buyer_id=%s", me.id)
        raise HTTPException(status_code=500, detail="Failed to check interaction limits")
    return _ok("Usage limits retrieved", snap.as_dict(action_type=(action_type or "").strip(), property_id=_query_int(property_id)))


@app.post("/buyer/interactions/record")
def record_interaction(body: RecordInteractionIn, me: BuyerUser, db: DbSession, rate_limiter: Limiter):
    try:
        snap = rate_limiter.record(
            db,
            buyer_id=me.id,
            property_id=int(body.property_id or 0),
            action_type=body.action_type or "",
        )
    except InvalidInteraction as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except QuotaExceeded as exc:
        raise HTTPException(status_code=429, detail={"message": "Rate limit exceeded", "data": exc.as_dict()})
    except StorageUnavailable:
        logger.exception("Interaction record failed buyer_id=%s", me.id)
        raise HTTPException(status_code=500, detail="Failed to record interaction")
    return _ok("Interaction recorded", snap.as_dict(action_type=(body.action_type or "").strip(), property_id=int(body.property_id or 0)))


# -----------------------
# Leads
# -----------------------
@app.get("/seller/leads")
def seller_leads(me: SellerUser, db: DbSession):
    items = leads.list_seller_leads(db, seller_id=me.id)
    return _ok("Leads retrieved", {"items": items, "total": len(items)})


@app.get("/admin/leads")
def admin_leads(me: AdminUser, db: DbSession, page: int = Query(default=1), limit: int = Query(default=20)):
    return _ok("Leads retrieved", leads.list_all_leads(db, page=page, limit=limit))


# -----------------------
# Moderation queue (admin)
# -----------------------
class ReviewIn(BaseModel):
    review_notes: str = ""


def _queue_id(raw: int | None) -> int:
    if not raw or int(raw) <= 0:
        raise HTTPException(status_code=400, detail="Queue ID is required")
    return int(raw)


@app.get("/admin/moderation-queue/list")
def moderation_queue_list(me: AdminUser, db: DbSession, page: int = Query(default=1), limit: int = Query(default=20)):
    return _ok("Moderation queue retrieved", moderation.list_open(db, page=page, limit=limit))


@app.get("/admin/moderation-queue/{queue_id}")
def moderation_queue_item(queue_id: int, me: AdminUser, db: DbSession):
    try:
        item = moderation.get_item(db, queue_id)
    except moderation.QueueItemNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _ok("Moderation queue item retrieved", item)


@app.post("/admin/moderation-queue/approve")
def moderation_approve(me: AdminUser, db: DbSession, raw_id: int | None = Query(default=None, alias="id"), body: ReviewIn | None = None):
    queue_id = _queue_id(raw_id)
    try:
        data = moderation.approve(db, queue_id=queue_id, reviewer_id=me.id, review_notes=(body.review_notes if body else ""))
    except (moderation.QueueItemNotFound, moderation.ReviewFileMissing) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except moderation.FileMoveError as exc:
        logger.exception("Approve failed queue_id=%s", queue_id)
        raise HTTPException(status_code=500, detail=str(exc))
    return _ok("Image approved", data)


@app.post("/admin/moderation-queue/reject")
def moderation_reject(me: AdminUser, db: DbSession, raw_id: int | None = Query(default=None, alias="id"), body: ReviewIn | None = None):
    queue_id = _queue_id(raw_id)
    try:
        data = moderation.reject(db, queue_id=queue_id, reviewer_id=me.id, review_notes=(body.review_notes if body else ""))
    except moderation.QueueItemNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _ok("Image rejected", data)
