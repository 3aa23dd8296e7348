from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Position(Base):
    __tablename__ = "positions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # Optional; filled from the department's company when left empty.
    location = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    salary_range = Column(String(100), nullable=True)
    employment_type = Column(String(50), nullable=True)  # Full-time | Part-time | Contract | ...
    qualifications = Column(Text, nullable=True)
    responsibilities = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Ordered so the first link is the inheritance parent.
    department_links = relationship(
        "DepartmentPosition",
        back_populates="position",
        cascade="all, delete-orphan",
        order_by="DepartmentPosition.department_id",
    )
    candidates = relationship("Candidate", back_populates="position")

    @property
    def departments(self) -> list:
        return [link.department for link in self.department_links if link.department is not None]
