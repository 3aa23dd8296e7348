import json
import logging

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base

logger = logging.getLogger(__name__)


class Candidate(Base):
    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), index=True, nullable=True)  # E.164, e.g. +998901234567
    telegram_username = Column(String(255), nullable=True)
    age = Column(String(20), nullable=True)
    city = Column(String(100), nullable=True)
    degree = Column(String(255), nullable=True)
    position_id = Column(Integer, ForeignKey("positions.id"), nullable=True)
    # Free-text position as typed in the bot; kept even when position_id is resolved.
    position_title = Column(String(255), nullable=True)
    bot_id = Column(Integer, ForeignKey("bots.id"), nullable=True)
    status = Column(String(50), nullable=False, default="applied")  # applied | screening | matched | hired | rejected

    # CRM linkage (Bitrix24 contact/deal ids)
    crm_contact_id = Column(String(50), index=True, nullable=True)
    crm_deal_id = Column(String(50), nullable=True)

    # File references: one public URL per document kind
    resume_url = Column(String(500), nullable=True)
    diploma_url = Column(String(500), nullable=True)
    voice_urls_json = Column(Text, nullable=True)  # JSON list, ordered by question number
    # Free-text answers to phase-2 questions (when the candidate typed instead of recording)
    answers_json = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    position = relationship("Position", back_populates="candidates")
    bot = relationship("Bot", back_populates="candidates")

    @property
    def voice_urls(self) -> list[str]:
        if not self.voice_urls_json:
            return []
        try:
            data = json.loads(self.voice_urls_json)
        except ValueError:
            logger.warning("Candidate %s has unreadable voice_urls_json; ignoring it", self.id)
            return []
        # Positional: index i is question i + 1, "" where no recording was stored.
        return [str(u or "") for u in data] if isinstance(data, list) else []

    @voice_urls.setter
    def voice_urls(self, urls: list[str] | None) -> None:
        self.voice_urls_json = json.dumps(list(urls), ensure_ascii=False) if urls and any(urls) else None

    @property
    def answers(self) -> dict[str, str]:
        if not self.answers_json:
            return {}
        try:
            data = json.loads(self.answers_json)
        except ValueError:
            logger.warning("Candidate %s has unreadable answers_json; ignoring it", self.id)
            return {}
        return data if isinstance(data, dict) else {}

    @answers.setter
    def answers(self, value: dict[str, str] | None) -> None:
        self.answers_json = json.dumps(value, ensure_ascii=False) if value else None
