import logging

from sqlalchemy.orm import Session

from ..models.candidate import Candidate
from ..models.company import Company
from ..models.department import Department
from ..models.position import Position

logger = logging.getLogger(__name__)

MATCHED_STATUSES = ("hired", "matched")


def get_stats(db: Session) -> dict:
    candidates = db.query(Candidate).count()
    matched = db.query(Candidate).filter(Candidate.status.in_(MATCHED_STATUSES)).count()
    match_rate = f"{round(matched / candidates * 100)}%" if candidates else "0%"
    stats = {
        "companies": db.query(Company).count(),
        "departments": db.query(Department).count(),
        "positions": db.query(Position).count(),
        "candidates": candidates,
        "match_rate": match_rate,
    }
    logger.debug("Dashboard stats: %s", stats)
    return stats
