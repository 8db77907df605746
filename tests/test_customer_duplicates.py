import unittest
from unittest.mock import patch

from crm_portal.db import close_db
from crm_portal.domain import duplicates
from crm_portal.errors import StoreError
from crm_portal.ui_strings import warning_message
from tests.helpers.seed import build_app
from tests.helpers.temp_db import TempDbSandbox


class DuplicateScoringTest(unittest.TestCase):
    def test_normalizers(self) -> None:
        self.assertEqual(duplicates.normalize_name("Ωμέγα  Καθαριστική Α.Ε."), "ωμεγα καθαριστικη αε")
        self.assertEqual(duplicates.normalize_phone("+30 210-123 4567"), "2101234567")
        self.assertEqual(duplicates.normalize_phone("0030 6983 505043"), "6983505043")
        self.assertEqual(duplicates.normalize_afm("EL 094-014-201"), "094014201")

    def test_name_similarity(self) -> None:
        self.assertEqual(duplicates.name_similarity("Omega Cleaning A.E.", "OMEGA CLEANING AE"), 100)
        self.assertEqual(duplicates.name_similarity("Cleaning Omega", "Omega Cleaning"), 100)
        self.assertEqual(duplicates.name_similarity("Xyz", "Omega Cleaning"), 0)
        self.assertEqual(duplicates.name_similarity("", "Omega Cleaning"), 0)

    def test_phone_and_afm_similarity(self) -> None:
        self.assertEqual(duplicates.phone_similarity("2101234567", "210 123 4567"), 100)
        self.assertEqual(duplicates.phone_similarity("1234567", "2101234567"), 80)
        self.assertEqual(duplicates.phone_similarity("2101234567", "2109999999"), 30)
        self.assertEqual(duplicates.afm_similarity("094014201", "094014201"), 100)
        self.assertEqual(duplicates.afm_similarity("094014201", "094014202"), 0)

    def test_incomplete_fields_are_not_compared(self) -> None:
        self.assertEqual(duplicates.search_terms({"company_name": "Om", "telephone": "2101", "afm": "12345"}), {})

    def test_weights_cover_only_supplied_fields(self) -> None:
        customer = {"company_name": "Omega Cleaning", "telephone": "2101234567", "afm": "094014201"}

        afm_only = duplicates.similarity({"afm": "094014201"}, customer)
        self.assertEqual(afm_only["score"], 100)

        terms = duplicates.search_terms({"company_name": "Omega Cleaning", "telephone": "6900000000"})
        mixed = duplicates.similarity(terms, customer)
        self.assertEqual(mixed["details"]["company_name"], 100)
        self.assertEqual(mixed["details"]["telephone"], 0)
        self.assertEqual(mixed["score"], 50)


class CustomerDuplicateRoutesTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="customer_duplicates")
        self.app = build_app(self._temp_db)
        self.client = self.app.test_client()
        self.headers = {"X-Tenant-Id": "tenant-duplicates"}
        response = self.client.post(
            "/api/customers",
            headers=self.headers,
            json={"company_name": "Omega Cleaning A.E.", "afm": "094014201", "telephone": "210 123 4567"},
        )
        self.assertEqual(response.status_code, 201)
        self.assertNotIn("duplicates", response.get_json())
        self.customer = response.get_json()["customer"]

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _duplicates(self, **params) -> dict:
        response = self.client.get("/api/customers/duplicates", headers=self.headers, query_string=params)
        self.assertEqual(response.status_code, 200, msg=response.get_data(as_text=True))
        return response.get_json()

    def test_matches_on_name_phone_or_afm(self) -> None:
        by_name = self._duplicates(company_name="omega cleaning ae")
        self.assertEqual(by_name["total"], 1)
        self.assertEqual(by_name["duplicates"][0]["id"], self.customer["id"])
        self.assertEqual(by_name["duplicates"][0]["score"], 100)

        self.assertEqual(self._duplicates(telephone="+30 2101234567")["total"], 1)
        self.assertEqual(self._duplicates(afm="094 014 201")["duplicates"][0]["details"]["afm"], 100)

    def test_unrelated_or_incomplete_input_finds_nothing(self) -> None:
        self.assertEqual(self._duplicates(company_name="Xyz")["total"], 0)
        self.assertEqual(self._duplicates(company_name="Om", afm="0940")["total"], 0)
        self.assertEqual(self._duplicates()["total"], 0)

    def test_excluded_and_deleted_customers_are_skipped(self) -> None:
        self.assertEqual(self._duplicates(afm="094014201", exclude_id=self.customer["id"])["total"], 0)

        self.client.delete(f"/api/customers/{self.customer['id']}", headers=self.headers)
        self.assertEqual(self._duplicates(afm="094014201")["total"], 0)

    def test_other_tenants_are_not_candidates(self) -> None:
        response = self.client.get(
            "/api/customers/duplicates",
            headers={"X-Tenant-Id": "tenant-other"},
            query_string={"afm": "094014201"},
        )
        self.assertEqual(response.get_json()["total"], 0)

    def test_create_warns_about_similar_customers(self) -> None:
        response = self.client.post(
            "/api/customers",
            headers=self.headers,
            json={"company_name": "OMEGA CLEANING AE", "telephone": "2101234567"},
        )

        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual([row["id"] for row in body["duplicates"]], [self.customer["id"]])
        self.assertEqual(body["warning"], warning_message("possible_duplicates"))
        self.assertNotEqual(body["customer"]["id"], self.customer["id"])

    def test_store_failure_is_logged_and_reports_no_matches(self) -> None:
        with patch(
            "crm_portal.infrastructure.repositories.customer_repository.CustomerRepository.duplicate_candidates",
            side_effect=StoreError(details="timeout"),
        ):
            with self.assertLogs("crm_portal.customers", level="ERROR") as logs:
                body = self._duplicates(afm="094014201")

        self.assertEqual(body["total"], 0)
        self.assertTrue(any("duplicate_check_failed" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
