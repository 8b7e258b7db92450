"""Doctor profile model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from clinic.database import Base
from clinic.models.user import User


class Doctor(Base):
    """Doctor profile keyed by the owning user's id."""
    __tablename__ = "doctors"

    id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    specialty = Column(String)
    is_active = Column(Boolean, default=True)

    user = relationship(User, lazy="joined")
