"""
ASGI entrypoint for deployments.

The FastAPI app lives in `backend/basira/main.py` and uses imports like
`from basira.db ...`, which requires `backend/` to be on `PYTHONPATH`.

With this repo-root `main.py` the server can be started with:
  uvicorn main:app --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import sys
from pathlib import Path


_ROOT = Path(__file__).resolve().parent
_BACKEND_DIR = _ROOT / "backend"

# Ensure `import basira...` resolves to `backend/basira/...`
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from basira.main import app  # noqa: E402,F401
