from pydantic import BaseModel
from typing import Dict, List, Any, Optional
from datetime import datetime


class OrganizationCreditOut(BaseModel):
    organization_id: str
    balance: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MemberQuotaOut(BaseModel):
    organization_id: str
    user_id: str
    limit: Optional[int] = None
    used: int
    period: str
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ModelUsageOut(BaseModel):
    id: int
    organization_id: str
    user_id: Optional[str] = None
    usage_type: str
    model: Optional[str] = None
    provider: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    count_used: Optional[int] = None
    credit_cost: int
    usage_metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TextUsageTotals(BaseModel):
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0


class UserUsageTotal(BaseModel):
    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    credits: int = 0
    text_tokens: int = 0
    image_count: int = 0
    three_d_count: int = 0


class UsageStatistics(BaseModel):
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None
    total_credits_used: int
    text: TextUsageTotals
    image_count: int
    three_d_count: int
    audio_count: int
    users: List[UserUsageTotal]


class OrganizationCreditSummary(BaseModel):
    organization_id: str
    name: str
    type: str
    balance: int
    total_used: int
    total_balance: int
    updated_at: Optional[datetime] = None


class MemberQuotaDetail(MemberQuotaOut):
    email: Optional[str] = None
    full_name: Optional[str] = None
    username: Optional[str] = None


class SetMemberQuotaRequest(BaseModel):
    # None means unlimited
    limit: Optional[int] = None


class RechargeRequest(BaseModel):
    delta: int
    metadata: Optional[Dict[str, Any]] = None


class SetBalanceRequest(BaseModel):
    balance: int
    metadata: Optional[Dict[str, Any]] = None
