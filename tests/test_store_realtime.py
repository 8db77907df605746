import os
import unittest

from crm_portal.db import close_db, get_db
from crm_portal.errors import StoreError
from crm_portal.infrastructure.store import Store, TenantScopeRequiredError
from crm_portal.observability import metrics_snapshot, reset_metrics_for_tests
from crm_portal.realtime import DELETE, INSERT, UPDATE, ChangeFeed, RealtimeChannel, RowChange, get_realtime_channel
from tests.helpers.seed import app_store, build_app, seed_customer
from tests.helpers.temp_db import TempDbSandbox


class StoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="store")
        self.app = build_app(self._temp_db)
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.store = app_store("tenant-a")
        self.changes: list[RowChange] = []
        get_realtime_channel().subscribe("customers", self.changes.append)

    def tearDown(self) -> None:
        close_db()
        self.ctx.pop()
        self._temp_db.cleanup()

    def test_store_requires_tenant(self) -> None:
        with self.assertRaises(TenantScopeRequiredError):
            Store(get_db(), tenant_id=" ")

    def test_unknown_table_is_rejected(self) -> None:
        with self.assertRaises(StoreError) as ctx:
            self.store.table("invoices")
        self.assertEqual(ctx.exception.code, "unknown_table")

    def test_insert_update_delete_emit_row_changes(self) -> None:
        row = seed_customer(self.store, "Kappa O.E.")
        self.store.table("customers").eq("id", row["id"]).update({"town": "Volos"})
        self.store.table("customers").eq("id", row["id"]).delete()

        self.assertEqual([change.event_type for change in self.changes], [INSERT, UPDATE, DELETE])
        self.assertEqual(self.changes[0].new["company_name"], "Kappa O.E.")
        self.assertIsNone(self.changes[1].old["town"])
        self.assertEqual(self.changes[1].new["town"], "Volos")
        self.assertEqual(self.changes[2].old["id"], row["id"])
        self.assertTrue(all(change.tenant_id == "tenant-a" for change in self.changes))

    def test_reads_and_writes_are_tenant_scoped(self) -> None:
        row = seed_customer(self.store, "Lambda A.E.")
        other = app_store("tenant-b")

        self.assertIsNone(other.table("customers").eq("id", row["id"]).single())
        self.assertEqual(other.table("customers").eq("id", row["id"]).update({"town": "Chania"}), [])
        self.assertEqual(other.table("customers").eq("id", row["id"]).delete(), [])
        self.assertEqual(self.store.table("customers").count(), 1)

    def test_filters_and_ordering(self) -> None:
        seed_customer(self.store, "Beta", town="Athens")
        seed_customer(self.store, "Alpha", town="Thessaloniki")
        seed_customer(self.store, "Gamma", town="Athens")

        names = [
            row["company_name"]
            for row in self.store.table("customers").select("company_name").eq("town", "Athens").order("company_name").execute()
        ]
        self.assertEqual(names, ["Beta", "Gamma"])

        matched = self.store.table("customers").match_any(("company_name", "town"), "%thess%").execute()
        self.assertEqual([row["company_name"] for row in matched], ["Alpha"])

        limited = self.store.table("customers").order("company_name", ascending=False).limit(1).execute()
        self.assertEqual(limited[0]["company_name"], "Gamma")
        self.assertEqual(self.store.table("customers").in_("id", []).execute(), [])

    def test_invalid_identifier_is_rejected(self) -> None:
        with self.assertRaises(StoreError):
            self.store.table("customers").eq("town; DROP TABLE customers", "x")


class RealtimeChannelTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_filters_match_on_row_values(self) -> None:
        channel = RealtimeChannel()
        received: list[RowChange] = []
        channel.subscribe("offers", received.append, filters={"customer_id": "c1"}, events=(INSERT,))

        channel.publish(RowChange(event_type="insert", table="offers", tenant_id="t", new={"id": "1", "customer_id": "c1"}))
        channel.publish(RowChange(event_type=INSERT, table="offers", tenant_id="t", new={"id": "2", "customer_id": "c2"}))
        channel.publish(RowChange(event_type=UPDATE, table="offers", tenant_id="t", new={"id": "1", "customer_id": "c1"}))
        channel.publish(RowChange(event_type=INSERT, table="contacts", tenant_id="t", new={"id": "3", "customer_id": "c1"}))

        self.assertEqual([change.record_id for change in received], ["1"])

    def test_failing_handler_does_not_block_others(self) -> None:
        channel = RealtimeChannel()
        received: list[RowChange] = []

        def broken(_change):
            raise RuntimeError("socket closed")

        channel.subscribe("offers", broken)
        channel.subscribe("offers", received.append)

        with self.assertLogs("crm_portal.realtime", level="ERROR"):
            delivered = channel.publish(RowChange(event_type=DELETE, table="offers", tenant_id="t", old={"id": "9"}))

        self.assertEqual(delivered, 1)
        self.assertEqual(len(received), 1)
        self.assertEqual(metrics_snapshot()["realtime_handler_failed_total"], 1)

    def test_unsupported_event_type(self) -> None:
        with self.assertRaises(ValueError):
            RowChange(event_type="TRUNCATE", table="offers", tenant_id="t")

    def test_payload_shape(self) -> None:
        change = RowChange(event_type=UPDATE, table="offers", tenant_id="t", new={"id": "1"}, old={"id": "1"})
        payload = change.to_payload()
        self.assertEqual(payload["eventType"], "UPDATE")
        self.assertEqual(set(payload), {"eventType", "table", "new", "old", "commit_timestamp"})

    def test_change_feed_buffers_until_closed(self) -> None:
        channel = RealtimeChannel()
        feed = ChangeFeed(channel, "offers", tenant_id="t")
        channel.publish(RowChange(event_type=INSERT, table="offers", tenant_id="t", new={"id": "1"}))

        change = feed.get(timeout=0.1)
        self.assertEqual(change.record_id, "1")
        self.assertIsNone(feed.get(timeout=0.01))

        feed.close()
        self.assertEqual(channel.subscriber_count(), 0)


class SandboxDatabaseTest(unittest.TestCase):
    def test_app_database_lives_in_sandbox_until_cleanup(self) -> None:
        sandbox = TempDbSandbox(prefix="sandbox")
        app = build_app(sandbox)

        self.assertEqual(app.config["DB_PATH"], sandbox.db_path)
        self.assertTrue(os.path.exists(sandbox.db_path))
        with app.app_context():
            self.assertEqual(app_store("tenant-a").table("customers").count(), 0)
            close_db()

        sandbox.cleanup()
        self.assertFalse(os.path.exists(sandbox.temp_dir))
        sandbox.cleanup()


if __name__ == "__main__":
    unittest.main()
