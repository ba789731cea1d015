from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from creditgate.core.database import Base


class AiModel(Base):
    """Provider model catalog entry; `pricing` holds the price schedule.

    Shape of `pricing`::

        {"units": [
            {"name": "textInput", "strategy": "fixed", "rate": 2.5, "unit": "millionTokens"},
            {"name": "imageGeneration", "strategy": "tiered", "tiers": [{"rate": 3, "upTo": 10}]}
        ]}
    """

    __tablename__ = "ai_models"
    __table_args__ = (UniqueConstraint("provider_id", "model_id", name="ai_models_provider_model_unique"),)

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(String(64), nullable=False, index=True)
    model_id = Column(String(150), nullable=False, index=True)
    display_name = Column(String, nullable=True)
    model_type = Column(String(32), nullable=True)
    pricing = Column(JSON, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
