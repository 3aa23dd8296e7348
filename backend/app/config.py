import os
from pathlib import Path
from dotenv import load_dotenv

# Override=True so changes in backend/.env take effect on process reload (and not get
# stuck on old environment variables).
#
# For automated tests (SQLite), we need to prevent backend/.env from overriding the
# test DATABASE_URL. Set DISABLE_DOTENV=1 to skip loading .env.
if os.getenv("DISABLE_DOTENV") != "1":
    load_dotenv(override=True)


def _env_bool(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or default).strip() in {"1", "true", "True", "yes", "YES"}


_raw_database_url = (os.getenv("DATABASE_URL") or "").strip()
# Default to a local SQLite DB for dev so the backend can start out-of-the-box.
# Use an absolute path so it works regardless of current working directory.
_default_sqlite_path = (Path(__file__).resolve().parent.parent / "dev.db").as_posix()
DATABASE_URL = _raw_database_url or f"sqlite:///{_default_sqlite_path}"

# -------------------- File storage --------------------
# Flat directory of candidate files; filenames are the only addressing scheme.
# Absolute path; override with UPLOAD_DIR in env (useful for tests).
UPLOAD_DIR = os.getenv("UPLOAD_DIR") or (Path(__file__).resolve().parent.parent / "uploads").as_posix()
TELEGRAM_FILES_SUBDIR = "telegram-files"
FILES_PUBLIC_PATH = os.getenv("FILES_PUBLIC_PATH", "/uploads/telegram-files")
# Host that serves FILES_PUBLIC_PATH; the stored URL is PUBLIC_BASE_URL + FILES_PUBLIC_PATH + /filename
PUBLIC_BASE_URL = (os.getenv("PUBLIC_BASE_URL") or "http://localhost:8000").rstrip("/")
MAX_INBOUND_FILE_BYTES = int(os.getenv("MAX_INBOUND_FILE_BYTES", str(20 * 1024 * 1024)) or "0")

# -------------------- Telegram bot --------------------
TELEGRAM_BOT_TOKEN = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")
# Shared secret expected in X-Webhook-Secret; empty disables the check (dev).
WEBHOOK_SECRET = (os.getenv("WEBHOOK_SECRET") or "").strip()
# A draft/owner_created session younger than this is treated as still running.
INTAKE_LOCK_S = int(os.getenv("INTAKE_LOCK_S", "300") or "300")

# -------------------- CRM (Bitrix24 inbound webhook) --------------------
# e.g. https://example.bitrix24.kz/rest/21/<token>
BITRIX_WEBHOOK_URL = (os.getenv("BITRIX_WEBHOOK_URL") or "").strip()

# Outbound HTTP (Telegram + CRM). Retries apply to transient failures only.
HTTP_TIMEOUT_S = float(os.getenv("HTTP_TIMEOUT_S", "30") or "30")
HTTP_MAX_RETRIES = int(os.getenv("HTTP_MAX_RETRIES", "2") or "2")
HTTP_LOG_PAYLOADS = _env_bool("HTTP_LOG_PAYLOADS", "0")

# Auth / JWT
# NOTE: keep a default for local dev so the server can boot even if SECRET_KEY isn't set.
SECRET_KEY = os.getenv("SECRET_KEY", "dev_secret_change_me")
