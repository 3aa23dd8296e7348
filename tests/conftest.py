import os
import sys
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


# Ensure `import backend.app...` works regardless of where pytest is run from.
BACKEND_DIR = Path(__file__).resolve().parents[1]
PROJECT_ROOT = BACKEND_DIR
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Set before any test module imports backend.app.config, which reads env at import time.
os.environ["DISABLE_DOTENV"] = "1"
# Tests must never reach the real bot API or CRM.
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["BITRIX_WEBHOOK_URL"] = ""
os.environ["WEBHOOK_SECRET"] = ""
os.environ["PUBLIC_BASE_URL"] = "https://files.example.test"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite3"


@pytest.fixture()
def file_store(tmp_path: Path):
    from backend.app.services.file_storage import FileStore

    return FileStore(tmp_path / "telegram-files", "https://files.example.test/uploads/telegram-files")


@pytest.fixture()
def app(test_db_path: Path, file_store) -> FastAPI:
    """
    Create a FastAPI app wired to a temporary SQLite DB.

    We intentionally do NOT import `app.main` so its startup hook never touches the dev DB.
    """
    # Must be set before importing app.database so engine init doesn't choke on empty DATABASE_URL.
    os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{test_db_path}"
    os.environ["UPLOAD_DIR"] = str(test_db_path.parent / "uploads")

    from backend.app import database as db

    engine = create_engine(
        os.environ["DATABASE_URL"],
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    # Patch the shared database module so router dependencies use the test DB.
    db.engine = engine
    db.SessionLocal = TestingSessionLocal

    # Import models so Base metadata is populated, then create tables.
    from backend.app import models  # noqa: F401

    db.Base.metadata.drop_all(bind=engine)
    db.Base.metadata.create_all(bind=engine)

    from backend.app.api import auth as auth_api
    from backend.app.api import candidates as candidates_api
    from backend.app.api import companies as companies_api
    from backend.app.api import departments as departments_api
    from backend.app.api import files as files_api
    from backend.app.api import positions as positions_api
    from backend.app.api import stats as stats_api
    from backend.app.api import validation as validation_api
    from backend.app.api import webhook as webhook_api
    from backend.app.utils.dependencies import get_file_store

    fastapi_app = FastAPI()
    fastapi_app.include_router(auth_api.router)
    fastapi_app.include_router(companies_api.router)
    fastapi_app.include_router(departments_api.router)
    fastapi_app.include_router(positions_api.router)
    fastapi_app.include_router(candidates_api.router)
    fastapi_app.include_router(stats_api.router)
    fastapi_app.include_router(files_api.router)
    fastapi_app.include_router(validation_api.router)
    fastapi_app.include_router(webhook_api.router)
    fastapi_app.include_router(files_api.public_router)

    fastapi_app.dependency_overrides[get_file_store] = lambda: file_store

    return fastapi_app


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(app: FastAPI):
    """
    Direct SQLAlchemy session bound to the same temporary SQLite DB used by the test app.
    """
    from backend.app import database

    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _token(client: TestClient, *, email: str, role: str) -> str:
    r = client.post(
        "/auth/signup",
        json={"email": email, "password": "Testpass123!", "role": role, "name": role.capitalize()},
    )
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


@pytest.fixture()
def admin_headers(client: TestClient) -> dict:
    return {"Authorization": f"Bearer {_token(client, email='admin@example.com', role='admin')}"}


@pytest.fixture()
def recruiter_headers(client: TestClient) -> dict:
    return {"Authorization": f"Bearer {_token(client, email='recruiter@example.com', role='recruiter')}"}
