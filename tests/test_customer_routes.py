import unittest

from crm_portal.db import close_db
from crm_portal.ui_strings import error_message
from tests.helpers.seed import build_app
from tests.helpers.temp_db import TempDbSandbox


class CustomerRoutesTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="customer_routes")
        self.app = build_app(self._temp_db)
        self.client = self.app.test_client()
        self.headers = {"X-Tenant-Id": "tenant-customers"}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _create_customer(self, **payload) -> dict:
        body = {"company_name": "Omega Cleaning A.E.", "afm": "094014201", "town": "Athens"}
        body.update(payload)
        response = self.client.post("/api/customers", headers=self.headers, json=body)
        self.assertEqual(response.status_code, 201, msg=response.get_data(as_text=True))
        return response.get_json()["customer"]

    def _create_contact(self, customer_id: str, full_name: str) -> dict:
        response = self.client.post(
            f"/api/customers/{customer_id}/contacts",
            headers=self.headers,
            json={"full_name": full_name, "email": "contact@example.com"},
        )
        self.assertEqual(response.status_code, 201, msg=response.get_data(as_text=True))
        return response.get_json()["contact"]

    def test_create_and_search_customers(self) -> None:
        self._create_customer()
        self._create_customer(company_name="Sigma Security", afm=None, town="Patra", email="INFO@SIGMA.GR")

        listed = self.client.get("/api/customers", headers=self.headers).get_json()
        self.assertEqual(listed["total"], 2)
        self.assertEqual([row["company_name"] for row in listed["customers"]], ["Omega Cleaning A.E.", "Sigma Security"])

        found = self.client.get("/api/customers?q=patra", headers=self.headers).get_json()["customers"]
        self.assertEqual([row["company_name"] for row in found], ["Sigma Security"])
        self.assertEqual(found[0]["email"], "info@sigma.gr")

    def test_customer_validation(self) -> None:
        missing = self.client.post("/api/customers", headers=self.headers, json={"company_name": "  "})
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.get_json()["error"], "company_name_required")

        bad_afm = self.client.post("/api/customers", headers=self.headers, json={"company_name": "X", "afm": "12345"})
        self.assertEqual(bad_afm.status_code, 400)
        self.assertEqual(bad_afm.get_json()["message"], error_message("afm_invalid"))

    def test_customers_are_tenant_scoped(self) -> None:
        customer = self._create_customer()
        other = self.client.get(f"/api/customers/{customer['id']}", headers={"X-Tenant-Id": "tenant-other"})
        self.assertEqual(other.status_code, 404)
        self.assertEqual(other.get_json()["error"], "customer_not_found")

    def test_partial_update(self) -> None:
        customer = self._create_customer()
        response = self.client.patch(
            f"/api/customers/{customer['id']}", headers=self.headers, json={"telephone": "2101234567"}
        )
        self.assertEqual(response.status_code, 200)
        updated = response.get_json()["customer"]
        self.assertEqual(updated["telephone"], "2101234567")
        self.assertEqual(updated["town"], "Athens")
        self.assertTrue(updated["updated_at"])

        unknown = self.client.patch(f"/api/customers/{customer['id']}", headers=self.headers, json={"rating": 5})
        self.assertEqual(unknown.status_code, 400)
        self.assertEqual(unknown.get_json()["error"], "field_unknown")

    def test_soft_deleted_customer_leaves_listing(self) -> None:
        customer = self._create_customer()
        deleted = self.client.delete(f"/api/customers/{customer['id']}", headers=self.headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.get_json()["customer"]["status"], "inactive")

        listed = self.client.get("/api/customers?include_inactive=1", headers=self.headers).get_json()
        self.assertEqual(listed["total"], 0)
        self.assertEqual(self.client.get(f"/api/customers/{customer['id']}", headers=self.headers).status_code, 404)

    def test_contacts_crud(self) -> None:
        customer = self._create_customer()
        contact = self._create_contact(customer["id"], "Eleni M.")

        renamed = self.client.patch(f"/api/contacts/{contact['id']}", headers=self.headers, json={"position": "Buyer"})
        self.assertEqual(renamed.get_json()["contact"]["position"], "Buyer")

        blank = self.client.patch(f"/api/contacts/{contact['id']}", headers=self.headers, json={"full_name": ""})
        self.assertEqual(blank.status_code, 400)
        self.assertEqual(blank.get_json()["error"], "full_name_required")

        detail = self.client.get(f"/api/customers/{customer['id']}", headers=self.headers).get_json()
        self.assertEqual([row["full_name"] for row in detail["contacts"]], ["Eleni M."])

        removed = self.client.delete(f"/api/contacts/{contact['id']}", headers=self.headers)
        self.assertEqual(removed.status_code, 200)
        contacts = self.client.get(f"/api/customers/{customer['id']}/contacts", headers=self.headers).get_json()
        self.assertEqual(contacts["contacts"], [])

    def test_primary_contact_must_belong_to_customer(self) -> None:
        first = self._create_customer()
        second = self._create_customer(company_name="Other Co", afm=None)
        foreign = self._create_contact(second["id"], "Stranger")

        response = self.client.put(
            f"/api/customers/{first['id']}/primary-contact", headers=self.headers, json={"contact_id": foreign["id"]}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "contact_not_of_customer")

        missing = self.client.put(
            f"/api/customers/{first['id']}/primary-contact", headers=self.headers, json={"contact_id": "nope"}
        )
        self.assertEqual(missing.status_code, 404)

    def test_deleting_primary_contact_clears_back_reference(self) -> None:
        customer = self._create_customer()
        contact = self._create_contact(customer["id"], "Kostas V.")
        keep = self._create_contact(customer["id"], "Anna D.")

        response = self.client.put(
            f"/api/customers/{customer['id']}/primary-contact", headers=self.headers, json={"contact_id": contact["id"]}
        )
        self.assertEqual(response.get_json()["customer"]["primary_contact_id"], contact["id"])

        self.client.delete(f"/api/contacts/{keep['id']}", headers=self.headers)
        current = self.client.get(f"/api/customers/{customer['id']}", headers=self.headers).get_json()["customer"]
        self.assertEqual(current["primary_contact_id"], contact["id"])

        self.client.delete(f"/api/contacts/{contact['id']}", headers=self.headers)
        current = self.client.get(f"/api/customers/{customer['id']}", headers=self.headers).get_json()["customer"]
        self.assertIsNone(current["primary_contact_id"])


if __name__ == "__main__":
    unittest.main()
