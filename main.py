"""
ASGI entrypoint for deployments (e.g. Render).

The FastAPI app lives in `backend/marketplace/main.py` and uses imports like
`from marketplace.db ...`, which requires `backend/` to be on `PYTHONPATH`.

With this repo-root `main.py` a PaaS can run:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import sys
from pathlib import Path


_ROOT = Path(__file__).resolve().parent
_BACKEND_DIR = _ROOT / "backend"

# Ensure `import marketplace...` resolves to `backend/marketplace/...`
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from marketplace.main import app  # noqa: E402,F401
