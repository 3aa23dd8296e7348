from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from ..database import Base


class IntakeSession(Base):
    """
    One bot application moving through draft -> owner_created -> files_attached.
    Files are only persisted once contact_id is set.
    """
    __tablename__ = "intake_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_key = Column(String(128), unique=True, nullable=False, index=True)
    state = Column(String(32), nullable=False, default="draft")  # draft | owner_created | files_attached | failed
    contact_id = Column(String(50), nullable=True)
    deal_id = Column(String(50), nullable=True)
    candidate_id = Column(Integer, nullable=True)
    payload_json = Column(Text, nullable=False)
    result_json = Column(Text, nullable=True)  # file urls etc. once files_attached
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
