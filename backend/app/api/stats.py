import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.dashboard import get_stats
from ..utils.roles import staff_only
from ..utils.error_handlers import handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Dashboard"])


@router.get("/stats")
def dashboard_stats(db: Session = Depends(get_db), user=Depends(staff_only)):
    try:
        stats = get_stats(db)
    except Exception as e:
        logger.error(f"Database error computing stats: {e}")
        raise handle_database_error(e, "computing stats")
    return {"success": True, **stats}
