"""
Pytest configuration and fixtures for the marketplace API tests.

Every test gets its own in-memory SQLite database and a temporary uploads tree.
"""
from __future__ import annotations

import datetime as dt
from types import SimpleNamespace
from typing import Generator

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.config import InteractionLimits
from marketplace.models import Base, ModerationQueueItem, Property, PropertyImage, User
from marketplace.rate_limit import InteractionLimiter
from marketplace.security import create_access_token


class FakeClock:
    """Adjustable clock for the interaction limiter."""

    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


@pytest.fixture(autouse=True)
def env(tmp_path, monkeypatch):
    root = tmp_path / "uploads"
    for sub in ("review", "properties", "rejected"):
        (root / sub).mkdir(parents=True)
    monkeypatch.setenv("UPLOADS_DIR", str(root))
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("NOTIFY_BACKEND", "disabled")
    for name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET", "UPLOAD_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    return SimpleNamespace(uploads=root, review=root / "review", properties=root / "properties", rejected=root / "rejected")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    """Buyer 42, seller 2 owning property 7, a second seller, and an admin."""
    buyer = User(id=42, email="buyer@example.com", name="Bea Buyer", phone="5550142", role="buyer")
    seller = User(id=2, email="seller@example.com", name="Sam Seller", role="seller")
    agent = User(id=5, email="agent@example.com", name="Ada Agent", role="agent")
    admin = User(id=3, email="admin@example.com", name="Admin", role="admin")
    db.add_all([buyer, seller, agent, admin])
    db.flush()
    prop = Property(id=7, owner_id=seller.id, title="Sea view flat", city="Chennai")
    other = Property(id=8, owner_id=agent.id, title="Garden villa", city="Madurai")
    db.add_all([prop, other])
    db.commit()
    return SimpleNamespace(buyer=buyer, seller=seller, agent=agent, admin=admin, prop=prop, other=other)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2026, 3, 1, 9, 0, 0, tzinfo=dt.timezone.utc))


@pytest.fixture
def limiter(clock) -> InteractionLimiter:
    return InteractionLimiter(InteractionLimits(max_attempts=5, window_hours=12), clock=clock)


@pytest.fixture
def client(session_factory, limiter) -> Generator[TestClient, None, None]:
    from marketplace.main import app, get_db, get_limiter

    def _get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_limiter] = lambda: limiter
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token(user_id=user.id, role=user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# -----------------------
# Synthetic images
# -----------------------
def flat_image(size=(640, 480), color=(128, 128, 128)) -> Image.Image:
    return Image.new("RGB", size, color)


def checkerboard(size=(640, 480), square: int = 8) -> Image.Image:
    w, h = size
    yy, xx = np.mgrid[0:h, 0:w]
    arr = ((((xx // square) + (yy // square)) % 2) * 255).astype(np.uint8)
    return Image.fromarray(arr).convert("RGB")


@pytest.fixture
def stage_image(db, env):
    """Write an image into review/ and create its PropertyImage + OPEN queue item."""

    def _stage(
        filename: str = "photo.png",
        *,
        property_id: int = 7,
        image: Image.Image | None = None,
        write_file: bool = True,
        created_at: dt.datetime | None = None,
        confidence_scores: str = "{}",
    ) -> tuple[PropertyImage, ModerationQueueItem]:
        if write_file:
            (image or checkerboard()).save(env.review / filename)
        img = PropertyImage(
            property_id=property_id,
            file_path=f"review/{filename}",
            original_filename=filename,
            moderation_status="NEEDS_REVIEW",
            confidence_scores=confidence_scores,
        )
        db.add(img)
        db.flush()
        item = ModerationQueueItem(property_image_id=img.id, reason_for_review="Automated checks passed - requires manual review")
        if created_at is not None:
            item.created_at = created_at
        db.add(item)
        db.commit()
        return img, item

    return _stage
