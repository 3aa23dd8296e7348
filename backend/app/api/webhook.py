import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .. import config
from ..database import get_db
from ..services.bitrix_client import BitrixClient
from ..services.file_storage import FileStore
from ..services.intake import IntakePayload, IntakePipeline
from ..services.telegram_client import TelegramFileSource
from ..utils.dependencies import get_crm_client, get_file_store, get_telegram_source
from ..utils.error_handlers import AppError, ConflictError, UpstreamServiceError, get_error_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhook"])


def _check_secret(received: str | None) -> None:
    expected = config.WEBHOOK_SECRET
    if not expected:
        return
    if not received or not hmac.compare_digest(received, expected):
        raise HTTPException(status_code=401, detail=get_error_message("invalid_webhook_secret"))


@router.post("/telegram")
async def telegram_intake(
    payload: IntakePayload,
    x_webhook_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
    crm: BitrixClient = Depends(get_crm_client),
    files: TelegramFileSource = Depends(get_telegram_source),
    store: FileStore = Depends(get_file_store),
):
    """Application submitted by the Telegram bot: contact + files + deal in the CRM."""
    _check_secret(x_webhook_secret)

    if not payload.full_name_uzbek and not payload.phone_number_uzbek:
        raise HTTPException(status_code=400, detail="Full name or phone number is required")

    pipeline = IntakePipeline(db, crm, files, store)
    try:
        result = await pipeline.process(payload)
    except ConflictError as e:
        # The bot retried while the first delivery is still running.
        logger.warning("Duplicate intake delivery: %s", e.details)
        raise HTTPException(status_code=409, detail=e.message)
    except UpstreamServiceError as e:
        logger.error("CRM failure during intake: %s (%s)", e.message, e.details)
        raise HTTPException(status_code=502, detail=get_error_message("crm_unavailable"))
    except AppError as e:
        logger.error("Intake failed: %s", e.message)
        raise HTTPException(status_code=e.status_code, detail=get_error_message("intake_failed"))

    return {"success": True, **result.as_dict()}
