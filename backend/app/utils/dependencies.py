from pathlib import Path

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .. import config
from ..services.bitrix_client import BitrixClient
from ..services.file_storage import FileStore
from ..services.telegram_client import TelegramFileSource
from .error_handlers import get_error_message
from .jwt import ALGORITHM

_bearer = HTTPBearer(auto_error=False)


def get_current_user(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> dict:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))
    try:
        payload = jwt.decode(credentials.credentials, config.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail=get_error_message("session_expired"))
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))
    return payload


# Clients are built per request from config so tests can swap them via dependency_overrides.

def get_file_store() -> FileStore:
    return FileStore(
        Path(config.UPLOAD_DIR) / config.TELEGRAM_FILES_SUBDIR,
        f"{config.PUBLIC_BASE_URL}{config.FILES_PUBLIC_PATH}",
        max_bytes=config.MAX_INBOUND_FILE_BYTES or None,
    )


def get_crm_client() -> BitrixClient:
    return BitrixClient(
        config.BITRIX_WEBHOOK_URL,
        timeout_s=config.HTTP_TIMEOUT_S,
        max_retries=config.HTTP_MAX_RETRIES,
        log_payloads=config.HTTP_LOG_PAYLOADS,
    )


def get_telegram_source() -> TelegramFileSource:
    return TelegramFileSource(
        config.TELEGRAM_BOT_TOKEN,
        api_base=config.TELEGRAM_API_BASE,
        timeout_s=config.HTTP_TIMEOUT_S,
        max_retries=config.HTTP_MAX_RETRIES,
    )
