import logging
import os
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from . import config
from .api import auth as auth_api
from .api import candidates as candidates_api
from .api import companies as companies_api
from .api import departments as departments_api
from .api import files as files_api
from .api import positions as positions_api
from .api import stats as stats_api
from .api import validation as validation_api
from .api import webhook as webhook_api
from .database import engine, init_db
from .utils.error_handlers import AppError, create_error_response, get_error_message

app = FastAPI(title="Career Intake Backend")

app.include_router(auth_api.router)
app.include_router(companies_api.router)
app.include_router(departments_api.router)
app.include_router(positions_api.router)
app.include_router(candidates_api.router)
app.include_router(stats_api.router)
app.include_router(files_api.router)
app.include_router(validation_api.router)
app.include_router(webhook_api.router)
app.include_router(files_api.public_router)

logger = logging.getLogger(__name__)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTPException with user-friendly messages."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Service-layer errors that escaped a router."""
    if exc.status_code >= 500:
        logger.error("%s: %s %s", type(exc).__name__, exc.message, exc.details)
        # Upstream/storage details stay in the log.
        message = get_error_message("crm_unavailable") if exc.status_code == 502 else get_error_message("server_error")
        return create_error_response(exc.status_code, message)
    return create_error_response(exc.status_code, exc.message, exc.details or None)


@app.exception_handler(OperationalError)
async def sqlalchemy_operational_error_handler(request: Request, exc: OperationalError):
    """Handle database operational errors."""
    logger.exception("Database OperationalError: %s", exc)
    root = getattr(exc, "orig", None)
    root_msg = str(root) if root else str(exc)
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "error": get_error_message("database_error"),
            "details": f"Database operation failed. Check DATABASE_URL / DB server. Details: {root_msg}",
        },
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    """Handle general database errors."""
    logger.exception("Database SQLAlchemyError: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": get_error_message("database_error"),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors globally."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": get_error_message("server_error"),
        },
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "Backend running",
        "service": "Career Intake Backend"
    }


_default_origins = ["http://localhost:5173", "http://127.0.0.1:5173"]
_extra_origins = [
    origin.strip()
    for origin in os.getenv("FRONTEND_ORIGINS", "").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=[*_default_origins, *_extra_origins],
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    try:
        init_db()
        Path(config.UPLOAD_DIR, config.TELEGRAM_FILES_SUBDIR).mkdir(parents=True, exist_ok=True)

        dialect = str((getattr(engine, "dialect", None) and engine.dialect.name) or "").lower()

        # SQLite dev mode: create_all() does not add columns to existing tables.
        # So we do a tiny best-effort migration for columns added after the first release.
        if dialect == "sqlite":
            try:
                with engine.begin() as conn:
                    def _sqlite_has_column(table: str, column: str) -> bool:
                        rows = conn.exec_driver_sql(f"PRAGMA table_info({table})").fetchall()
                        return any((r[1] == column) for r in rows)  # r[1] = name

                    for column, ddl in (
                        ("answers_json", "ALTER TABLE candidates ADD COLUMN answers_json TEXT NULL"),
                        ("bot_id", "ALTER TABLE candidates ADD COLUMN bot_id INTEGER NULL"),
                        ("crm_deal_id", "ALTER TABLE candidates ADD COLUMN crm_deal_id VARCHAR(50) NULL"),
                    ):
                        if not _sqlite_has_column("candidates", column):
                            conn.exec_driver_sql(ddl)
            except Exception as e:
                # Best-effort only; /db/health reports real connectivity problems.
                logger.warning("SQLite column check skipped: %s", e)

        app.state.db_init_error = None
    except Exception as e:
        logger.exception("Database init failed: %s", e)
        app.state.db_init_error = str(e)


@app.get("/db/health")
def db_health():
    if getattr(app.state, "db_init_error", None):
        raise HTTPException(
            status_code=503,
            detail=f"DB init failed: {app.state.db_init_error}",
        )

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"DB connection failed: {e}",
        )

    return {"status": "ok"}
