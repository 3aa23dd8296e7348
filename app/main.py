"""Repo-root Uvicorn entrypoint for the admin API and bot webhook.

    uvicorn app.main:app --reload

The application itself lives in `backend/app/main.py`.
"""

from backend.app.main import app  # re-export
