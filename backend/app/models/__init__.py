from .bot import Bot
from .candidate import Candidate
from .company import Company
from .department import Department, DepartmentPosition
from .intake_session import IntakeSession
from .position import Position
from .user import User

__all__ = [
    "Bot",
    "Candidate",
    "Company",
    "Department",
    "DepartmentPosition",
    "IntakeSession",
    "Position",
    "User",
]
