import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from .. import config
from ..database import get_db
from ..models.candidate import Candidate
from ..services.file_storage import FileStore
from ..services.orphan_audit import audit_file_references
from ..utils.dependencies import get_file_store
from ..utils.roles import staff_only
from ..utils.error_handlers import ValidationError, get_error_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["Files"])

# Stored files are public by URL: the CRM links to them directly.
public_router = APIRouter(prefix=config.FILES_PUBLIC_PATH, tags=["Files"])


@router.get("/audit")
def audit_candidate_files(db: Session = Depends(get_db), user=Depends(staff_only)):
    """Read-only report of candidate file references still carrying the placeholder owner."""
    candidates = db.query(Candidate).order_by(Candidate.id).all()
    report = audit_file_references(candidates)
    return {"success": True, "report": report.as_dict()}


@public_router.get("/{filename}")
def get_stored_file(filename: str, store: FileStore = Depends(get_file_store)):
    try:
        path = store.path_for(filename)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid filename")

    if not path.is_file():
        raise HTTPException(status_code=404, detail=get_error_message("file_not_found"))

    return FileResponse(path, filename=filename)
