"""
App assembly entry point.

Re-exports the FastAPI `app` from `tulemar.api.main` so `uvicorn app:app`
works from the service directory.
"""

from tulemar.api.main import app  # noqa: F401
