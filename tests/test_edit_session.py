import time
import unittest

from crm_portal.errors import NotFoundError, ValidationError
from crm_portal.offers.details_staging import DetailsStagingStore
from crm_portal.offers.edit_session import EditSessionRegistry, OfferEditSession, watch_offer_changes
from crm_portal.offers.form_state import OfferFormState
from crm_portal.realtime import INSERT, UPDATE, RealtimeChannel, RowChange
from crm_portal.ui_strings import warning_message


def _session(tenant_id: str = "tenant-a", offer_id: str | None = None) -> OfferEditSession:
    return OfferEditSession(
        tenant_id=tenant_id,
        customer_id="cust-1",
        form=OfferFormState.defaults("cust-1"),
        staging=DetailsStagingStore(),
        offer_id=offer_id,
    )


class OfferEditSessionTest(unittest.TestCase):
    def test_apply_fields_rejects_unknown_names(self) -> None:
        session = _session()
        with self.assertRaises(ValidationError) as ctx:
            session.apply_fields({"town": "Larisa", "customer_id": "cust-2"})
        self.assertEqual(ctx.exception.code, "field_unknown")
        self.assertIsNone(session.form.get("town"))

    def test_payload_describes_dialog(self) -> None:
        session = _session()
        session.apply_fields({"amount": "9.999"})
        payload = session.to_payload()

        self.assertTrue(payload["is_new"])
        self.assertIn("amount", payload["errors"])
        self.assertFalse(payload["selecting"])
        self.assertEqual(len(payload["sections"]), 6)
        self.assertEqual(payload["details"], [])

    def test_dismiss_drops_staged_work(self) -> None:
        session = _session()
        session.staging.begin_selection()
        session.staging.toggle_selection("cat-1")
        session.dismiss()

        self.assertTrue(session.closed)
        self.assertIsNone(session.staging.selection)


class EditSessionRegistryTest(unittest.TestCase):
    def test_get_is_scoped_by_tenant(self) -> None:
        registry = EditSessionRegistry()
        session = registry.open(_session())

        self.assertIs(registry.get(session.id, tenant_id="tenant-a"), session)
        with self.assertRaises(NotFoundError) as ctx:
            registry.get(session.id, tenant_id="tenant-b")
        self.assertEqual(ctx.exception.code, "session_not_found")

    def test_discard_closes_session(self) -> None:
        registry = EditSessionRegistry()
        session = registry.open(_session())

        registry.discard(session.id)

        self.assertTrue(session.closed)
        self.assertEqual(len(registry), 0)
        self.assertIsNone(registry.find(session.id))

    def test_idle_sessions_expire_unless_saving(self) -> None:
        registry = EditSessionRegistry(ttl_seconds=60)
        idle = registry.open(_session())
        saving = registry.open(_session())
        idle.touched_at = time.monotonic() - 120
        saving.touched_at = time.monotonic() - 120
        saving.in_flight = True

        registry.open(_session())

        self.assertIsNone(registry.find(idle.id))
        self.assertIs(registry.find(saving.id), saving)
        self.assertTrue(idle.closed)


class WatchOfferChangesTest(unittest.TestCase):
    def setUp(self) -> None:
        self.channel = RealtimeChannel()
        self.registry = EditSessionRegistry()
        watch_offer_changes(self.registry, self.channel)

    def _update(self, offer_id: str, tenant_id: str = "tenant-a") -> None:
        self.channel.publish(
            RowChange(event_type=UPDATE, table="offers", tenant_id=tenant_id, new={"id": offer_id}, old={"id": offer_id})
        )

    def test_open_session_gets_notice(self) -> None:
        session = self.registry.open(_session(offer_id="offer-1"))
        other = self.registry.open(_session(offer_id="offer-2"))

        self._update("offer-1")

        self.assertEqual(session.stale_notice, warning_message("updated_elsewhere"))
        self.assertIsNone(other.stale_notice)

    def test_session_saving_itself_is_not_flagged(self) -> None:
        session = self.registry.open(_session(offer_id="offer-1"))
        session.in_flight = True

        self._update("offer-1")

        self.assertIsNone(session.stale_notice)

    def test_other_tenant_and_inserts_are_ignored(self) -> None:
        session = self.registry.open(_session(offer_id="offer-1"))

        self._update("offer-1", tenant_id="tenant-b")
        self.channel.publish(RowChange(event_type=INSERT, table="offers", tenant_id="tenant-a", new={"id": "offer-1"}))

        self.assertIsNone(session.stale_notice)


if __name__ == "__main__":
    unittest.main()
