"""Doctor model definitions."""

from sqlalchemy import JSON, Column, Integer, String
from clinic_backend.database import Base


class Doctor(Base):
    """Represents a doctor and their weekly working hours."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    specialization = Column(String, index=True)
    schedule = Column(JSON, nullable=True)  # {"monday": {"start": "09:00", "end": "17:00"}, ...}
