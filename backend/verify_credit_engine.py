from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from creditgate.core.database import Base
from creditgate.core.errors import CreditErrorCode, ModelCreditError
from creditgate.models import ai_model, async_task, model_credit, organization, rbac, user  # noqa: F401
from creditgate.models.model_credit import ModelCreditTransaction, ModelUsage
from creditgate.models.organization import Organization
from creditgate.models.user import User
from creditgate.services import ledger
from creditgate.services.credit_calculator import calculate_image_credits
from creditgate.services.credits_engine import ChargeUsageInput, ModelCreditService, UsageInput


def main() -> None:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        org = Organization(name="Verify School", type="school")
        db.add(org)
        db.commit()
        db.add(User(id="user-1", email="user-1@example.com", organization_id=org.id))
        db.commit()

        service = ModelCreditService(db)
        service.recharge_organization(org.id, 100, operator_id="root")
        service.set_member_quota_limit(org.id, "user-1", 50)
        ledger.increment_used(db, org.id, "user-1", 45)
        db.commit()

        context = service.ensure_allowance("user-1", 4)
        result = service.charge(
            ChargeUsageInput(
                user_id="user-1",
                credits=4,
                reason="image_generation",
                usage=UsageInput(usage_type="image", model="img-1", provider="acme", count_used=1),
            ),
            context,
        )
        assert result.organization.balance == 96, result.organization.balance
        assert result.member_quota.used == 49, result.member_quota.used

        try:
            service.ensure_allowance("user-1", 6)
            raise AssertionError("expected MEMBER_QUOTA_EXCEEDED")
        except ModelCreditError as e:
            assert e.code == CreditErrorCode.MEMBER_QUOTA_EXCEEDED, e.code

        assert ledger.get_organization_credit(db, org.id).balance == 96
        assert db.query(ModelUsage).count() == 1
        assert db.query(ModelCreditTransaction).count() == 2

        assert calculate_image_credits(3, {"units": [{"name": "imageGeneration", "strategy": "fixed", "rate": 2}]}) == 6
        assert calculate_image_credits(3, None) == 15
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
