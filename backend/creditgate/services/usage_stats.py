from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from creditgate.models.model_credit import MemberQuota, ModelUsage
from creditgate.models.organization import Organization
from creditgate.models.user import User
from creditgate.services import ledger


def _usage_query(
    db: Session,
    *,
    organization_id: str | None = None,
    user_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    q = db.query(ModelUsage)
    if organization_id:
        q = q.filter(ModelUsage.organization_id == organization_id)
    if user_id:
        q = q.filter(ModelUsage.user_id == user_id)
    if start is not None:
        q = q.filter(ModelUsage.created_at >= start)
    if end is not None:
        q = q.filter(ModelUsage.created_at <= end)
    return q


def list_usages(
    db: Session,
    *,
    organization_id: str | None = None,
    user_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[ModelUsage]:
    q = _usage_query(db, organization_id=organization_id, user_id=user_id, start=start, end=end)
    return q.order_by(ModelUsage.created_at.desc(), ModelUsage.id.desc()).offset(offset).limit(limit).all()


def compute_usage_statistics(db: Session, organization_id: str | None = None) -> dict[str, Any]:
    """Totals per usage type plus a per-user breakdown, heaviest users first."""
    usages = _usage_query(db, organization_id=organization_id).all()

    total_credits = 0
    text = {"total_input_tokens": 0, "total_output_tokens": 0, "total_tokens": 0}
    counts = {"image": 0, "threeD": 0, "audio": 0}
    per_user: dict[str, dict[str, Any]] = {}

    for usage in usages:
        cost = int(usage.credit_cost or 0)
        total_credits += cost
        if usage.usage_type == "text":
            text["total_input_tokens"] += int(usage.input_tokens or 0)
            text["total_output_tokens"] += int(usage.output_tokens or 0)
            text["total_tokens"] += int(usage.total_tokens or 0)
        elif usage.usage_type in counts:
            counts[usage.usage_type] += int(usage.count_used or 0)

        if not usage.user_id:
            continue
        stats = per_user.setdefault(
            usage.user_id,
            {"user_id": usage.user_id, "credits": 0, "text_tokens": 0, "image_count": 0, "three_d_count": 0},
        )
        stats["credits"] += cost
        if usage.usage_type == "text":
            stats["text_tokens"] += int(usage.total_tokens or 0)
        elif usage.usage_type == "image":
            stats["image_count"] += int(usage.count_used or 0)
        elif usage.usage_type == "threeD":
            stats["three_d_count"] += int(usage.count_used or 0)

    users = sorted(per_user.values(), key=lambda s: s["credits"], reverse=True)
    if users:
        info = {
            u.id: u
            for u in db.query(User).filter(User.id.in_([s["user_id"] for s in users])).all()
        }
        for stats in users:
            user = info.get(stats["user_id"])
            stats["email"] = user.email if user else None
            stats["full_name"] = user.full_name if user else None

    organization_name = None
    if organization_id:
        org = db.query(Organization).filter(Organization.id == organization_id).first()
        organization_name = org.name if org else None

    return {
        "organization_id": organization_id,
        "organization_name": organization_name,
        "total_credits_used": total_credits,
        "text": text,
        "image_count": counts["image"],
        "three_d_count": counts["threeD"],
        "audio_count": counts["audio"],
        "users": users,
    }


def organization_credit_summaries(db: Session) -> list[dict[str, Any]]:
    """Every organization's balance, credits used by its members and their sum.

    Missing credit rows are created with a zero balance.
    """
    out: list[dict[str, Any]] = []
    for org in db.query(Organization).order_by(Organization.created_at.asc(), Organization.name.asc()).all():
        credit = ledger.get_organization_credit(db, org.id) or ledger.ensure_organization_credit(db, org.id)
        used = sum(
            int(q.used or 0) for q in db.query(MemberQuota).filter(MemberQuota.organization_id == org.id).all()
        )
        balance = int(credit.balance or 0)
        out.append(
            {
                "organization_id": org.id,
                "name": org.name,
                "type": org.type,
                "balance": balance,
                "total_used": used,
                "total_balance": balance + used,
                "updated_at": credit.updated_at,
            }
        )
    db.commit()
    return out


def member_quota_details(db: Session, organization_id: str) -> list[dict[str, Any]]:
    """Quota rows for every member of the organization, creating unlimited ones where missing."""
    out: list[dict[str, Any]] = []
    members = db.query(User).filter(User.organization_id == organization_id).order_by(User.created_at.asc()).all()
    for user in members:
        quota = ledger.get_member_quota(db, organization_id, user.id) or ledger.ensure_member_quota(
            db, organization_id, user.id
        )
        out.append(
            {
                "organization_id": organization_id,
                "user_id": user.id,
                "limit": quota.limit,
                "used": int(quota.used or 0),
                "period": quota.period,
                "updated_at": quota.updated_at,
                "email": user.email,
                "full_name": user.full_name,
                "username": user.username,
            }
        )
    db.commit()
    return out
