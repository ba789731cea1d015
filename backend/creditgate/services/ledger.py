from __future__ import annotations

from typing import Any

from sqlalchemy import and_, case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from creditgate.core.database import dialect_insert
from creditgate.models.model_credit import MemberQuota, ModelCreditTransaction, ModelUsage, OrganizationCredit


DEFAULT_QUOTA_PERIOD = "total"


def _fetch(db: Session, model, *criteria):
    stmt = select(model).where(*criteria).execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def _upsert_touch(db: Session, model, values: dict[str, Any], keys: list[str]) -> None:
    """Insert `values` or, on a unique conflict over `keys`, only bump updated_at."""
    stmt = dialect_insert(db, model.__table__)
    if stmt is not None:
        stmt = stmt.values(**values).on_conflict_do_update(index_elements=keys, set_={"updated_at": func.now()})
        db.execute(stmt)
        return

    where = and_(*[model.__table__.c[k] == values[k] for k in keys])
    try:
        with db.begin_nested():
            db.execute(model.__table__.insert().values(**values))
    except IntegrityError:
        db.execute(model.__table__.update().where(where).values(updated_at=func.now()))


def ensure_organization_credit(db: Session, organization_id: str) -> OrganizationCredit:
    _upsert_touch(
        db,
        OrganizationCredit,
        {"organization_id": organization_id, "balance": 0},
        ["organization_id"],
    )
    return _fetch(db, OrganizationCredit, OrganizationCredit.organization_id == organization_id)


def get_organization_credit(db: Session, organization_id: str) -> OrganizationCredit | None:
    return _fetch(db, OrganizationCredit, OrganizationCredit.organization_id == organization_id)


def adjust_balance(db: Session, organization_id: str, delta: int) -> OrganizationCredit | None:
    """Add `delta` to the balance in a single UPDATE; no floor is applied."""
    result = db.execute(
        update(OrganizationCredit)
        .where(OrganizationCredit.organization_id == organization_id)
        .values(balance=OrganizationCredit.balance + int(delta), updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return get_organization_credit(db, organization_id)


def set_balance(db: Session, organization_id: str, balance: int) -> OrganizationCredit | None:
    result = db.execute(
        update(OrganizationCredit)
        .where(OrganizationCredit.organization_id == organization_id)
        .values(balance=int(balance), updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return get_organization_credit(db, organization_id)


def _quota_criteria(organization_id: str, user_id: str):
    return (MemberQuota.organization_id == organization_id, MemberQuota.user_id == user_id)


def ensure_member_quota(db: Session, organization_id: str, user_id: str) -> MemberQuota:
    _upsert_touch(
        db,
        MemberQuota,
        {
            "organization_id": organization_id,
            "user_id": user_id,
            "limit": None,
            "used": 0,
            "period": DEFAULT_QUOTA_PERIOD,
        },
        ["organization_id", "user_id"],
    )
    return _fetch(db, MemberQuota, *_quota_criteria(organization_id, user_id))


def get_member_quota(db: Session, organization_id: str, user_id: str) -> MemberQuota | None:
    return _fetch(db, MemberQuota, *_quota_criteria(organization_id, user_id))


def increment_used(db: Session, organization_id: str, user_id: str, delta: int) -> MemberQuota | None:
    """Add `delta` to used in a single UPDATE, clamping the result at zero."""
    next_used = MemberQuota.used + int(delta)
    result = db.execute(
        update(MemberQuota)
        .where(*_quota_criteria(organization_id, user_id))
        .values(used=case((next_used < 0, 0), else_=next_used), updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return get_member_quota(db, organization_id, user_id)


def reset_used(db: Session, organization_id: str, user_id: str) -> MemberQuota | None:
    result = db.execute(
        update(MemberQuota)
        .where(*_quota_criteria(organization_id, user_id))
        .values(used=0, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return get_member_quota(db, organization_id, user_id)


def set_quota_limit(db: Session, organization_id: str, user_id: str, limit: int | None) -> MemberQuota | None:
    result = db.execute(
        update(MemberQuota)
        .where(*_quota_criteria(organization_id, user_id))
        .values(limit=limit, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return get_member_quota(db, organization_id, user_id)


def create_model_usage(
    db: Session,
    *,
    organization_id: str,
    user_id: str | None,
    usage_type: str,
    credit_cost: int,
    model: str | None = None,
    provider: str | None = None,
    input_tokens: int | None = None,
    output_tokens: int | None = None,
    total_tokens: int | None = None,
    count_used: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> ModelUsage:
    usage = ModelUsage(
        organization_id=organization_id,
        user_id=user_id,
        usage_type=usage_type,
        model=model,
        provider=provider,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        count_used=count_used,
        credit_cost=int(credit_cost),
        usage_metadata=(metadata or None),
    )
    db.add(usage)
    db.flush()
    return usage


def create_credit_transaction(
    db: Session,
    *,
    organization_id: str,
    delta: int,
    user_id: str | None = None,
    usage_id: int | None = None,
    balance_after: int | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ModelCreditTransaction:
    txn = ModelCreditTransaction(
        organization_id=organization_id,
        user_id=user_id,
        usage_id=usage_id,
        delta=int(delta),
        balance_after=balance_after,
        reason=reason,
        transaction_metadata=(metadata or None),
    )
    db.add(txn)
    db.flush()
    return txn
