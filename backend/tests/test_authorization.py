import unittest
from unittest import mock

from fastapi import HTTPException

from creditgate.core.authorization import assert_has_role, has_required_role, resolve_request_roles
from creditgate.core.rbac import normalize_role_names
from creditgate.core.security import claimed_roles


class TestRoleNormalization(unittest.TestCase):
    def test_trim_lowercase_and_dedupe(self):
        self.assertEqual(normalize_role_names([" Admin", "ADMIN", "", None, "user "]), ["admin", "user"])

    def test_single_name(self):
        self.assertEqual(normalize_role_names("Root"), ["root"])
        self.assertEqual(normalize_role_names(None), [])

    def test_claims_fallbacks(self):
        self.assertEqual(claimed_roles({"roles": ["Admin"]}), ["admin"])
        self.assertEqual(claimed_roles({"app_metadata": {"roles": ["root"]}}), ["root"])
        self.assertEqual(claimed_roles({"role": "user"}), ["user"])
        self.assertEqual(claimed_roles({}), [])


class TestRoleChecks(unittest.TestCase):
    def test_has_required_role(self):
        self.assertTrue(has_required_role(["user", "Admin"], ["admin", "root"]))
        self.assertFalse(has_required_role(["user"], "admin"))
        self.assertFalse(has_required_role(None, "admin"))

    def test_assert_has_role_custom_error(self):
        with self.assertRaises(HTTPException) as ctx:
            assert_has_role(["user"], "root")
        self.assertEqual(ctx.exception.status_code, 403)

        with self.assertRaises(KeyError):
            assert_has_role(["user"], "root", error=KeyError("nope"))


class TestResolveRequestRoles(unittest.TestCase):
    def test_claims_satisfy_without_lookup(self):
        loader = mock.Mock(return_value=[])
        roles = resolve_request_roles(["admin"], ["Admin"], "u1", loader)
        self.assertEqual(roles, ["admin"])
        loader.assert_not_called()

    def test_no_user_id_fails_closed_without_lookup(self):
        loader = mock.Mock(return_value=["admin"])
        with self.assertRaises(HTTPException) as ctx:
            resolve_request_roles(["admin"], [], None, loader)
        self.assertEqual(ctx.exception.status_code, 401)
        loader.assert_not_called()

    def test_falls_back_to_stored_roles(self):
        loader = mock.Mock(return_value=["ADMIN", "user"])
        roles = resolve_request_roles(["admin"], ["user"], "u1", loader)
        self.assertEqual(roles, ["user", "admin"])
        loader.assert_called_once_with("u1")

    def test_rejects_when_stored_roles_do_not_match(self):
        loader = mock.Mock(return_value=["user"])
        with self.assertRaises(HTTPException) as ctx:
            resolve_request_roles(["root"], [], "u1", loader)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_rejects_without_loader(self):
        with self.assertRaises(HTTPException) as ctx:
            resolve_request_roles(["root"], ["user"], "u1", None)
        self.assertEqual(ctx.exception.status_code, 403)


if __name__ == "__main__":
    unittest.main()
