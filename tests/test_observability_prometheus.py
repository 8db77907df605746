import json
import logging
import unittest

from crm_portal.core.event_bus import OfferDeleted, get_event_bus
from crm_portal.db import close_db
from crm_portal.observability import (
    JsonLogFormatter,
    metrics_snapshot,
    observe_offer_save,
    reset_metrics_for_tests,
    set_log_request_id,
)
from tests.helpers.seed import build_app
from tests.helpers.temp_db import TempDbSandbox


class ObservabilityPrometheusTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        self.app = build_app(self._temp_db)
        self.client = self.app.test_client()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_endpoint_exposes_prometheus_metrics(self) -> None:
        self.client.get("/api/unknown")
        observe_offer_save("success", 42.0)
        with self.app.app_context():
            get_event_bus().publish(OfferDeleted(tenant_id="tenant-metrics", offer_id="o1", customer_id="c1"))

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/plain", response.headers.get("Content-Type") or "")

        payload = response.get_data(as_text=True)
        self.assertIn("http_request_total", payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn('offer_saves_total{result="success"} 1', payload)
        self.assertIn("offer_save_duration_ms_bucket", payload)
        self.assertIn("offer_detail_deletion_failed_total", payload)
        self.assertIn("realtime_delivered_total", payload)
        self.assertIn('domain_event_emitted_total{event_type="OfferDeleted"} 1', payload)

    def test_metrics_start_empty_after_reset(self) -> None:
        self.assertEqual(metrics_snapshot()["followup_tasks"], {})
        self.assertEqual(metrics_snapshot()["requests_total"], 0)

    def test_log_formatter_includes_request_id_outside_request_context(self) -> None:
        set_log_request_id("worker-req-123")
        formatter = JsonLogFormatter()
        record = logging.LogRecord(
            name="crm_portal.tasks",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="followup_task_failed",
            args=(),
            exc_info=None,
        )
        record.offer_id = "offer-1"
        parsed = json.loads(formatter.format(record))
        self.assertEqual(parsed.get("request_id"), "worker-req-123")
        self.assertEqual(parsed.get("offer_id"), "offer-1")
        self.assertEqual(parsed.get("logger"), "crm_portal.tasks")


if __name__ == "__main__":
    unittest.main()
