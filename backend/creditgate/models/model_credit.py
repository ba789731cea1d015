from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from creditgate.core.database import Base


class OrganizationCredit(Base):
    __tablename__ = "model_credits"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False)
    balance = Column(Integer, nullable=False, default=0)
    credit_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class MemberQuota(Base):
    __tablename__ = "member_quotas"
    __table_args__ = (UniqueConstraint("organization_id", "user_id", name="member_quotas_org_user_unique"),)

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # null means unlimited
    limit = Column(Integer, nullable=True)
    used = Column(Integer, nullable=False, default=0)
    period = Column(String(32), nullable=False, default="total")
    quota_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ModelUsage(Base):
    __tablename__ = "model_usage"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    usage_type = Column(String(32), nullable=False, index=True)
    model = Column(String, nullable=True)
    provider = Column(String, nullable=True)
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    count_used = Column(Integer, nullable=True)
    credit_cost = Column(Integer, nullable=False)
    usage_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class ModelCreditTransaction(Base):
    __tablename__ = "model_credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    usage_id = Column(Integer, ForeignKey("model_usage.id", ondelete="SET NULL"), nullable=True, index=True)
    delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=True)
    reason = Column(String(64), nullable=True, index=True)
    transaction_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
