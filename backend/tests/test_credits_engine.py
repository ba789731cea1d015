import unittest
from unittest import mock

from creditgate.core.errors import CreditErrorCode, ModelCreditError
from creditgate.models.model_credit import ModelCreditTransaction, ModelUsage
from creditgate.services import ledger
from creditgate.services.credits_engine import (
    AllowanceContext,
    ChargeUsageInput,
    ModelCreditService,
    UsageInput,
)

from support import add_organization, add_user, make_session_factory


def _image_charge(credits, user_id="u1", organization_id=None):
    return ChargeUsageInput(
        user_id=user_id,
        organization_id=organization_id,
        credits=credits,
        reason="image_generation",
        usage=UsageInput(usage_type="image", model="img-1", provider="acme", count_used=1),
    )


class TestModelCreditService(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.org = add_organization(self.db)
        add_user(self.db, "u1", self.org.id)
        add_user(self.db, "loner")
        self.service = ModelCreditService(self.db)

        ledger.ensure_organization_credit(self.db, self.org.id)
        ledger.set_balance(self.db, self.org.id, 100)
        ledger.ensure_member_quota(self.db, self.org.id, "u1")
        ledger.set_quota_limit(self.db, self.org.id, "u1", 50)
        ledger.increment_used(self.db, self.org.id, "u1", 45)
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def _state(self):
        credit = ledger.get_organization_credit(self.db, self.org.id)
        quota = ledger.get_member_quota(self.db, self.org.id, "u1")
        return credit.balance, quota.used

    def test_allowance_within_quota_then_charge(self):
        context = self.service.ensure_allowance("u1", 4)
        self.assertEqual(context, AllowanceContext(self.org.id, "u1", 4))

        result = self.service.charge(_image_charge(4), context)

        self.assertEqual(self._state(), (96, 49))
        self.assertEqual(result.usage.credit_cost, 4)
        self.assertEqual(result.transaction.delta, -4)
        self.assertEqual(result.transaction.balance_after, 96)
        self.assertEqual(result.transaction.reason, "image_generation")
        self.assertEqual(result.transaction.usage_id, result.usage.id)

    def test_allowance_over_quota_changes_nothing(self):
        with self.assertRaises(ModelCreditError) as ctx:
            self.service.ensure_allowance("u1", 6)

        self.assertEqual(ctx.exception.code, CreditErrorCode.MEMBER_QUOTA_EXCEEDED)
        self.assertEqual(self._state(), (100, 45))
        self.assertEqual(self.db.query(ModelUsage).count(), 0)

    def test_allowance_insufficient_balance(self):
        ledger.set_quota_limit(self.db, self.org.id, "u1", None)
        self.db.commit()

        with self.assertRaises(ModelCreditError) as ctx:
            self.service.ensure_allowance("u1", 101)
        self.assertEqual(ctx.exception.code, CreditErrorCode.ORGANIZATION_CREDIT_INSUFFICIENT)

    def test_allowance_requires_organization(self):
        with self.assertRaises(ModelCreditError) as ctx:
            self.service.ensure_allowance("loner", 1)
        self.assertEqual(ctx.exception.code, CreditErrorCode.USER_ORGANIZATION_REQUIRED)

    def test_zero_requirement_skips_checks(self):
        ledger.set_balance(self.db, self.org.id, 0)
        ledger.increment_used(self.db, self.org.id, "u1", 100)
        self.db.commit()

        context = self.service.ensure_allowance("u1", 0)
        self.assertEqual(context.required_credits, 0)

    def test_charge_without_context_runs_allowance(self):
        with self.assertRaises(ModelCreditError):
            self.service.charge(_image_charge(6))
        self.assertEqual(self._state(), (100, 45))

    def test_sequential_charges(self):
        ledger.set_quota_limit(self.db, self.org.id, "u1", None)
        self.db.commit()
        for credits in (10, 20, 5):
            self.service.charge(_image_charge(credits))

        balance, used = self._state()
        self.assertEqual(balance, 65)
        self.assertEqual(used, 80)
        self.assertEqual(self.db.query(ModelCreditTransaction).count(), 3)

    def test_charge_may_drive_balance_negative(self):
        context = AllowanceContext(self.org.id, "u1", 1)
        ledger.set_quota_limit(self.db, self.org.id, "u1", None)
        self.db.commit()

        with self.assertLogs("creditgate.services.credits_engine", level="WARNING"):
            result = self.service.charge(_image_charge(120), context)
        self.assertEqual(result.organization.balance, -20)

    def test_zero_charge_records_usage_only(self):
        result = self.service.charge(_image_charge(0))
        self.assertEqual(self._state(), (100, 45))
        self.assertEqual(result.usage.credit_cost, 0)
        self.assertEqual(result.transaction.delta, 0)

    def test_failed_usage_insert_rolls_back_everything(self):
        context = self.service.ensure_allowance("u1", 4)
        with mock.patch.object(ledger, "create_model_usage", side_effect=RuntimeError("insert failed")):
            with self.assertRaises(RuntimeError):
                self.service.charge(_image_charge(4), context)

        self.assertEqual(self._state(), (100, 45))
        self.assertEqual(self.db.query(ModelCreditTransaction).count(), 0)

    def test_rejects_invalid_requests(self):
        with self.assertRaises(ValueError):
            self.service.charge(_image_charge(-1))

        bad_type = _image_charge(1)
        bad_type.usage.usage_type = "video"
        with self.assertRaises(ValueError):
            self.service.charge(bad_type)

        context = AllowanceContext(self.org.id, "u1", 1)
        with self.assertRaises(ValueError):
            self.service.charge(_image_charge(1, user_id="someone-else"), context)
        with self.assertRaises(ValueError):
            self.service.charge(_image_charge(1, organization_id="other-org"), context)

    def test_reason_defaults_to_usage_type(self):
        request = _image_charge(2)
        request.reason = None
        result = self.service.charge(request)
        self.assertEqual(result.transaction.reason, "image")


class TestCreditAdministration(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.org = add_organization(self.db)
        add_user(self.db, "u1", self.org.id)
        self.service = ModelCreditService(self.db)

    def tearDown(self):
        self.db.close()

    def test_recharge_and_adjust(self):
        credit = self.service.recharge_organization(self.org.id, 50, operator_id="root-1")
        self.assertEqual(credit.balance, 50)
        credit = self.service.recharge_organization(self.org.id, -20, operator_id="root-1")
        self.assertEqual(credit.balance, 30)

        reasons = [t.reason for t in self.db.query(ModelCreditTransaction).order_by(ModelCreditTransaction.id)]
        self.assertEqual(reasons, ["recharge", "adjust"])

    def test_recharge_zero_rejected(self):
        with self.assertRaises(ValueError):
            self.service.recharge_organization(self.org.id, 0)

    def test_set_balance(self):
        self.service.recharge_organization(self.org.id, 10)
        credit = self.service.set_organization_balance(self.org.id, 75)
        self.assertEqual(credit.balance, 75)

        self.service.set_organization_balance(self.org.id, 75)
        self.assertEqual(self.db.query(ModelCreditTransaction).count(), 2)

    def test_member_quota_admin(self):
        quota = self.service.set_member_quota_limit(self.org.id, "u1", 30)
        self.assertEqual(quota.limit, 30)

        ledger.increment_used(self.db, self.org.id, "u1", 12)
        self.db.commit()
        quota = self.service.reset_member_usage(self.org.id, "u1")
        self.assertEqual(quota.used, 0)

        quota = self.service.set_member_quota_limit(self.org.id, "u1", None)
        self.assertIsNone(quota.limit)

        with self.assertRaises(ValueError):
            self.service.set_member_quota_limit(self.org.id, "u1", -1)


if __name__ == "__main__":
    unittest.main()
