import os
import unittest
from unittest.mock import patch

from crm_portal.db import close_db
from crm_portal.ui_strings import error_message
from tests.helpers.seed import build_app
from tests.helpers.temp_db import TempDbSandbox


class AuthRequiredTest(unittest.TestCase):
    def setUp(self) -> None:
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"
        self._temp_db = TempDbSandbox(prefix="error_auth")
        self.app = build_app(
            self._temp_db,
            TESTING=False,
            AUTH_ENABLED=True,
            DB_AUTO_INIT=True,
            APP_USERS="seller@demo.com:pass123:tenant-auth:Seller One:user",
        )
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env

    def test_unauthenticated_api_call(self) -> None:
        response = self.client.get("/api/customers")
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_health_is_public(self) -> None:
        self.assertEqual(self.client.get("/health").status_code, 200)

    def test_login_me_logout(self) -> None:
        wrong = self.client.post("/api/auth/login", json={"email": "seller@demo.com", "password": "nope"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.get_json()["error"], "invalid_credentials")

        login = self.client.post("/api/auth/login", json={"email": "Seller@Demo.com", "password": "pass123"})
        self.assertEqual(login.status_code, 200)
        user = login.get_json()["user"]
        self.assertEqual(user["tenant_id"], "tenant-auth")
        self.assertEqual(user["display_name"], "Seller One")
        self.assertEqual(user["role"], "user")

        self.assertEqual(self.client.get("/api/customers").status_code, 200)
        self.assertEqual(self.client.get("/api/auth/me").get_json()["user"]["email"], "seller@demo.com")

        self.client.post("/api/auth/logout")
        self.assertEqual(self.client.get("/api/customers").status_code, 401)


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = build_app(self._temp_db)
        self.client = self.app.test_client()
        self.headers = {"X-Tenant-Id": "tenant-error-api"}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_unexpected_exception_is_mapped(self) -> None:
        with patch(
            "crm_portal.application.customer_service.CustomerService.list_customers",
            side_effect=RuntimeError("boom"),
        ):
            response = self.client.get("/api/customers", headers=self.headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload["error"], "unexpected_error")
        self.assertEqual(payload["message"], error_message("unexpected_error"))
        self.assertNotIn("boom", response.get_data(as_text=True))

    def test_unknown_route_returns_json(self) -> None:
        response = self.client.get("/api/unknown", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "not_found")

    def test_request_id_is_echoed(self) -> None:
        response = self.client.get("/api/customers", headers={**self.headers, "X-Request-Id": "req-42"})
        self.assertEqual(response.headers.get("X-Request-Id"), "req-42")

    def test_catalog_writes_need_admin(self) -> None:
        denied = self.client.post("/api/catalog/categories", headers=self.headers, json={"name": "Gardening"})
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.get_json()["error"], "permission_denied")

        with self.client.session_transaction() as sess:
            sess["user_role"] = "admin"
        created = self.client.post("/api/catalog/categories", headers=self.headers, json={"name": "Gardening"})
        self.assertEqual(created.status_code, 201)
        category_id = created.get_json()["category"]["id"]

        sub = self.client.post(
            f"/api/catalog/categories/{category_id}/subcategories", headers=self.headers, json={"name": "Lawns"}
        )
        self.assertEqual(sub.status_code, 201)
        blank = self.client.post("/api/catalog/units", headers=self.headers, json={"name": " "})
        self.assertEqual(blank.status_code, 400)
        self.assertEqual(blank.get_json()["error"], "name_required")

        tree = self.client.get("/api/catalog/categories", headers=self.headers).get_json()["categories"]
        self.assertEqual([item["id"] for item in tree], [category_id])
        self.assertEqual([item["name"] for item in tree[0]["subcategories"]], ["Lawns"])


if __name__ == "__main__":
    unittest.main()
