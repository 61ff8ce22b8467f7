"""
Run automated quality screening over every PENDING property image.

Blurry or undersized images are rejected; the rest go to the manual
moderation queue. Run from `backend/`:

  python -m scripts.screen_pending_images [--limit N]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from sqlalchemy import select

# Ensure `marketplace` imports work when running from backend/.
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from marketplace.db import session_scope  # noqa: E402
from marketplace.models import PropertyImage  # noqa: E402
from marketplace.moderation import screen_image  # noqa: E402
from marketplace.utils.blur_detector import BlurDetector  # noqa: E402

logger = logging.getLogger("screen_pending_images")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--limit", type=int, default=500, help="max images to screen in one run")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    detector = BlurDetector()
    counts = {"REJECTED": 0, "NEEDS_REVIEW": 0}

    with session_scope() as db:
        images = db.execute(
            select(PropertyImage)
            .where(PropertyImage.moderation_status == "PENDING")
            .order_by(PropertyImage.id.asc())
            .limit(max(1, int(args.limit)))
        ).scalars().all()
        for img in images:
            res = screen_image(db, img, detector=detector)
            counts[res["moderation_status"]] = counts.get(res["moderation_status"], 0) + 1

    print(f"Screened {sum(counts.values())} image(s): {counts['REJECTED']} rejected, {counts['NEEDS_REVIEW']} queued for review.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
