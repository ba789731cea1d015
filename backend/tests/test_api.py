import unittest

from fastapi.testclient import TestClient

from creditgate.core.database import get_db
from creditgate.core.errors import ChatErrorType
from creditgate.core.security import CurrentUser, get_current_user
from creditgate.models.model_credit import ModelCreditTransaction, ModelUsage
from creditgate.services import ledger
from creditgate.services.pricing import clear_pricing_cache
from creditgate.services.roles import RoleService, seed_system_roles
from creditgate.services.runtime import (
    ChatResult,
    ModelRuntime,
    ProviderError,
    ThreeDResult,
    register_runtime,
    unregister_runtime,
)
from main import app

from support import add_organization, add_user, make_session_factory


class FakeRuntime(ModelRuntime):
    provider = "fake"

    def __init__(self):
        self.chat_error = None
        self.images = ["https://cdn/a.png", "https://cdn/b.png"]

    async def chat(self, payload, *, user=None):
        if self.chat_error is not None:
            raise self.chat_error
        return ChatResult(
            content="hello",
            model=payload["model"],
            usage={"total_input_tokens": 12, "total_output_tokens": 3, "total_tokens": 15},
        )

    async def text_to_image(self, payload):
        return list(self.images)

    async def create_3d_model(self, payload):
        return ThreeDResult(model_url="https://cdn/mesh.glb", format="glb")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        clear_pricing_cache()
        self.factory = make_session_factory()
        self.db = self.factory()
        seed_system_roles(self.db)
        self.org = add_organization(self.db, "North School")
        self.other_org = add_organization(self.db, "South School")
        add_user(self.db, "u1", self.org.id)
        add_user(self.db, "u2", self.org.id)
        add_user(self.db, "outsider", self.other_org.id)
        add_user(self.db, "loner")
        ledger.ensure_organization_credit(self.db, self.org.id)
        ledger.set_balance(self.db, self.org.id, 100)
        self.db.commit()

        self.runtime = FakeRuntime()
        register_runtime("fake", self.runtime)
        self.current_user = CurrentUser(id="u1", email="u1@example.com")

        def override_db():
            db = self.factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_current_user] = lambda: self.current_user
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        unregister_runtime("fake")
        self.db.close()

    def act_as(self, user_id, *roles):
        self.current_user = CurrentUser(id=user_id, email=f"{user_id}@example.com", roles=tuple(roles))

    def balance(self):
        self.db.expire_all()
        return ledger.get_organization_credit(self.db, self.org.id).balance


class TestGenerationApi(ApiTestCase):
    def test_chat_charges_actual_usage(self):
        res = self.client.post(
            "/api/webapi/chat/fake",
            json={"model": "chat-1", "messages": [{"role": "user", "content": "hi"}]},
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["content"], "hello")
        self.assertEqual(res.json()["credits"], 1)
        self.assertEqual(self.balance(), 99)

        usage = self.db.query(ModelUsage).one()
        self.assertEqual(usage.usage_type, "text")
        self.assertEqual(usage.total_tokens, 15)
        txn = self.db.query(ModelCreditTransaction).one()
        self.assertEqual(txn.reason, "chat_completion")

    def test_insufficient_balance_is_402(self):
        ledger.set_balance(self.db, self.org.id, 0)
        self.db.commit()

        res = self.client.post("/api/webapi/chat/fake", json={"model": "chat-1", "messages": []})
        self.assertEqual(res.status_code, 402)
        body = res.json()
        self.assertEqual(body["errorType"], ChatErrorType.ORGANIZATION_CREDIT_INSUFFICIENT)
        self.assertEqual(body["body"]["error"]["code"], "ORGANIZATION_CREDIT_INSUFFICIENT")
        self.assertEqual(body["body"]["provider"], "fake")

    def test_quota_exceeded_is_429(self):
        ledger.ensure_member_quota(self.db, self.org.id, "u1")
        ledger.set_quota_limit(self.db, self.org.id, "u1", 0)
        self.db.commit()

        res = self.client.post("/api/webapi/chat/fake", json={"model": "chat-1", "messages": []})
        self.assertEqual(res.status_code, 429)
        self.assertEqual(res.json()["errorType"], ChatErrorType.MEMBER_QUOTA_EXCEEDED)

    def test_user_without_organization_is_403(self):
        self.act_as("loner")
        res = self.client.post("/api/webapi/chat/fake", json={"model": "chat-1", "messages": []})
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()["errorType"], ChatErrorType.USER_ORGANIZATION_REQUIRED)

    def test_provider_error_charges_nothing(self):
        self.runtime.chat_error = ProviderError("bad key", error_type=ChatErrorType.INVALID_PROVIDER_API_KEY, status=401)
        res = self.client.post("/api/webapi/chat/fake", json={"model": "chat-1", "messages": []})

        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["errorType"], ChatErrorType.INVALID_PROVIDER_API_KEY)
        self.assertEqual(self.balance(), 100)
        self.assertEqual(self.db.query(ModelUsage).count(), 0)

    def test_image_charges_for_returned_images(self):
        res = self.client.post("/api/webapi/text-to-image/fake", json={"model": "img-1", "prompt": "cat", "n": 3})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["credits"], 10)
        self.assertEqual(self.balance(), 90)

        usage = self.db.query(ModelUsage).one()
        self.assertEqual(usage.count_used, 2)
        self.assertEqual(usage.usage_metadata["estimatedCredits"], 15)

    def test_threed_task_lifecycle(self):
        res = self.client.post("/api/webapi/threed/fake", json={"model": "mesh-1", "params": {"prompt": "teapot"}})
        self.assertEqual(res.status_code, 202, res.text)
        task_id = res.json()["task_id"]
        self.assertEqual(res.json()["estimated_credits"], 10)

        res = self.client.get(f"/api/webapi/threed/tasks/{task_id}")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["status"], "success")
        self.assertEqual(res.json()["asset"]["modelUrl"], "https://cdn/mesh.glb")
        self.assertEqual(self.balance(), 90)

        self.act_as("u2")
        self.assertEqual(self.client.get(f"/api/webapi/threed/tasks/{task_id}").status_code, 404)


class TestQuotaApi(ApiTestCase):
    def test_my_credit_and_quota(self):
        res = self.client.get("/api/quota/me/organization-credit")
        self.assertEqual(res.json()["balance"], 100)

        res = self.client.get("/api/quota/me")
        self.assertEqual(res.status_code, 200)
        self.assertIsNone(res.json()["limit"])

        self.act_as("loner")
        self.assertIsNone(self.client.get("/api/quota/me").json())

    def test_my_quota_creates_row_without_changing_limit(self):
        ledger.ensure_member_quota(self.db, self.org.id, "u2")
        ledger.set_quota_limit(self.db, self.org.id, "u2", 25)
        self.db.commit()

        self.act_as("u2")
        self.assertEqual(self.client.get("/api/quota/me").json()["limit"], 25)

        self.act_as("u1")
        res = self.client.get("/api/quota/me")
        self.assertEqual(res.json()["used"], 0)

        self.db.expire_all()
        self.assertIsNotNone(ledger.get_member_quota(self.db, self.org.id, "u1"))
        self.assertEqual(self.db.query(ModelCreditTransaction).count(), 0)

    def test_statistics_per_user(self):
        self.client.post("/api/webapi/chat/fake", json={"model": "chat-1", "messages": [{"role": "user", "content": "hi"}]})
        self.client.post("/api/webapi/text-to-image/fake", json={"model": "img-1", "prompt": "cat"})

        self.act_as("u1", "admin")
        stats = self.client.get("/api/quota/statistics").json()

        self.assertEqual(stats["organization_name"], "North School")
        self.assertEqual(stats["total_credits_used"], 11)
        self.assertEqual(stats["text"]["total_tokens"], 15)
        self.assertEqual(stats["image_count"], 2)
        self.assertEqual(stats["users"][0]["user_id"], "u1")
        self.assertEqual(stats["users"][0]["email"], "u1@example.com")

        usages = self.client.get("/api/quota/me/usages").json()
        self.assertEqual(len(usages), 2)

    def test_me_includes_balance_and_roles(self):
        RoleService(self.db).assign_roles("u1", ["user"])
        res = self.client.get("/api/me")

        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["roles"], ["user"])
        self.assertEqual(res.json()["organization"]["name"], "North School")
        self.assertEqual(res.json()["organization_balance"], 100)

    def test_regular_user_cannot_read_statistics(self):
        self.assertEqual(self.client.get("/api/quota/statistics").status_code, 403)

    def test_admin_manages_own_organization_only(self):
        self.act_as("u1", "admin")

        res = self.client.put(f"/api/quota/organizations/{self.org.id}/members/u2", json={"limit": 25})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["limit"], 25)

        res = self.client.put(f"/api/quota/organizations/{self.org.id}/members/outsider", json={"limit": 25})
        self.assertEqual(res.status_code, 400)

        res = self.client.get(f"/api/quota/organizations/{self.other_org.id}/members")
        self.assertEqual(res.status_code, 403)

        res = self.client.post(f"/api/quota/organizations/{self.org.id}/recharge", json={"delta": 10})
        self.assertEqual(res.status_code, 403)

    def test_root_recharges_and_sets_balance(self):
        self.act_as("root-1", "root")

        res = self.client.post(f"/api/quota/organizations/{self.org.id}/recharge", json={"delta": 50})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["balance"], 150)

        res = self.client.put(f"/api/quota/organizations/{self.org.id}/balance", json={"balance": 20})
        self.assertEqual(res.json()["balance"], 20)

        res = self.client.post(f"/api/quota/organizations/{self.org.id}/recharge", json={"delta": 0})
        self.assertEqual(res.status_code, 400)

        summaries = {s["name"]: s for s in self.client.get("/api/quota/organizations").json()}
        self.assertEqual(summaries["North School"]["balance"], 20)
        self.assertEqual(summaries["South School"]["balance"], 0)


class TestRolesApi(ApiTestCase):
    def test_stored_admin_role_grants_access(self):
        self.act_as("u1")
        self.assertEqual(self.client.get("/api/roles").status_code, 403)

        RoleService(self.db).assign_roles("u1", ["admin"])
        res = self.client.get("/api/roles")
        self.assertEqual(res.status_code, 200)
        self.assertEqual({r["name"] for r in res.json()}, {"root", "admin", "user"})

    def test_only_root_assigns_root(self):
        self.act_as("u1", "admin")
        res = self.client.post("/api/roles/users/u2/assign", json={"roles": ["root"]})
        self.assertEqual(res.status_code, 403)

        self.act_as("root-1", "root")
        res = self.client.post("/api/roles/users/u2/assign", json={"roles": ["Root", "ghost"]})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["result"], {"assigned": 1, "missing": ["ghost"]})
        self.assertEqual([r["name"] for r in res.json()["roles"]], ["root"])

        res = self.client.post("/api/roles/users/u2/revoke", json={"roles": ["root"]})
        self.assertEqual(res.json()["removed"], 1)
        self.assertEqual(res.json()["roles"], [])


class TestOrganizationsApi(ApiTestCase):
    def test_root_lifecycle(self):
        self.act_as("root-1", "root")

        res = self.client.post("/api/organizations", json={"name": "HQ", "type": "management"})
        self.assertEqual(res.status_code, 201, res.text)
        hq_id = res.json()["id"]

        res = self.client.patch(f"/api/organizations/{hq_id}", json={"type": "school"})
        self.assertEqual(res.status_code, 400)

        res = self.client.patch(f"/api/organizations/{hq_id}", json={"max_users": 10})
        self.assertEqual(res.json()["max_users"], 10)
        self.assertEqual(res.json()["type"], "management")

        self.assertEqual(self.client.delete(f"/api/organizations/{self.org.id}").status_code, 400)
        self.assertEqual(self.client.delete(f"/api/organizations/{hq_id}").status_code, 400)

    def test_admin_sees_own_organization(self):
        self.act_as("u1", "admin")
        res = self.client.get("/api/organizations")
        self.assertEqual([o["name"] for o in res.json()], ["North School"])
        self.assertEqual(self.client.post("/api/organizations", json={"name": "X", "type": "school"}).status_code, 403)

    def test_member_assignment_respects_capacity_and_scope(self):
        RoleService(self.db).assign_roles("loner", ["user"])
        RoleService(self.db).assign_roles("outsider", ["user"])

        self.act_as("u1", "admin")
        res = self.client.put("/api/organizations/members/outsider", json={"organization_id": None})
        self.assertEqual(res.status_code, 403)
        res = self.client.put("/api/organizations/members/loner", json={"organization_id": self.other_org.id})
        self.assertEqual(res.status_code, 403)

        self.act_as("root-1", "root")
        self.client.patch(f"/api/organizations/{self.org.id}", json={"max_users": 2})

        self.act_as("u1", "admin")
        res = self.client.put("/api/organizations/members/loner", json={"organization_id": self.org.id})
        self.assertEqual(res.status_code, 400)

        self.act_as("root-1", "root")
        self.client.patch(f"/api/organizations/{self.org.id}", json={"max_users": 3})

        self.act_as("u1", "admin")
        res = self.client.put("/api/organizations/members/loner", json={"organization_id": self.org.id})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["organization_id"], self.org.id)


if __name__ == "__main__":
    unittest.main()
