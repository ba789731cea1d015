from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.sql import func

from creditgate.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True, nullable=True)
    username = Column(String, index=True, nullable=True)
    full_name = Column(String, nullable=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="SET NULL"), index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
