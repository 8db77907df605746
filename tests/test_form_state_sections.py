import unittest

from crm_portal.errors import ValidationError
from crm_portal.offers.form_state import (
    LOADING_PLACEHOLDER,
    FormContext,
    LabelTranslator,
    OfferFormState,
    normalize_source,
    result_label,
    status_value,
)
from crm_portal.offers.sections import (
    CertificateSection,
    CommentsSection,
    StatusResultSection,
    apply_sections,
    render_sections,
)
from crm_portal.ui_strings import error_message, warning_message


class OfferFormStateTest(unittest.TestCase):
    def test_defaults_for_new_offer(self) -> None:
        form = OfferFormState.defaults("cust-1", current_user_id="user-1")

        self.assertEqual(form.get("customer_id"), "cust-1")
        self.assertEqual(form.get("source"), "Email")
        self.assertEqual(form.get("status"), "wait_for_our_answer")
        self.assertEqual(form.get("result"), "none")
        self.assertEqual(form.get("assigned_to"), "user-1")
        self.assertFalse(form.get("hma"))

    def test_labels_are_stored_as_codes(self) -> None:
        form = OfferFormState.defaults("cust-1")
        form.update({"source": "Τηλέφωνο", "status": "Ολοκληρώθηκε", "result": "Επιτυχία"})

        self.assertEqual(form.get("source"), "Phone")
        self.assertEqual(form.get("status"), "ready")
        self.assertEqual(form.get("result"), "success")

    def test_legacy_source_spellings_normalize(self) -> None:
        self.assertEqual(normalize_source("telephone"), "Phone")
        self.assertEqual(normalize_source("In Person"), "Physical")
        self.assertEqual(normalize_source(""), "Email")
        self.assertEqual(normalize_source("carrier pigeon"), "Email")

    def test_unknown_field_is_rejected(self) -> None:
        form = OfferFormState.defaults("cust-1")
        with self.assertRaises(ValidationError) as ctx:
            form.set("discount", "10")
        self.assertEqual(ctx.exception.code, "field_unknown")

    def test_amount_accepts_up_to_two_decimals(self) -> None:
        form = OfferFormState.defaults("cust-1")
        for value in ("", "12", "12.5", "12.50"):
            form.set("amount", value)
            self.assertEqual(form.validate(), {}, msg=value)

        for value in ("12.345", "abc", "-4", "1,5"):
            form.set("amount", value)
            self.assertEqual(form.validate().get("amount"), error_message("amount_invalid"), msg=value)

    def test_unknown_status_code_fails_validation(self) -> None:
        form = OfferFormState.defaults("cust-1")
        form.set("status", "archived")
        self.assertIn("status", form.validate())

    def test_result_without_ready_warns_but_is_kept(self) -> None:
        form = OfferFormState.defaults("cust-1")
        form.set("result", "success")

        self.assertEqual(form.get("result"), "success")
        self.assertEqual(form.result_warning(), warning_message("result_requires_ready"))

        form.set("status", "ready")
        self.assertIsNone(form.result_warning())

    def test_header_payload_drops_certificate_without_flag(self) -> None:
        form = OfferFormState.defaults("cust-1")
        form.update({"hma": "false", "certificate": "ISO-9001", "amount": " 150.00 "})
        payload = form.to_header_payload()

        self.assertIsNone(payload["certificate"])
        self.assertEqual(payload["amount"], "150.00")

        form.set("hma", "on")
        self.assertEqual(form.to_header_payload()["certificate"], "ISO-9001")

    def test_from_offer_reads_header_fields_only(self) -> None:
        form = OfferFormState.from_offer(
            {"id": "offer-1", "customer_id": "cust-1", "source": "Site", "status": "ready", "tenant_id": "t"}
        )
        values = form.values()
        self.assertNotIn("id", values)
        self.assertEqual(values["source"], "Site")


class LabelTranslatorTest(unittest.TestCase):
    def test_unknown_values_pass_through(self) -> None:
        translator = LabelTranslator({"a": "Alpha"})
        self.assertEqual(translator.label("a"), "Alpha")
        self.assertEqual(translator.label("b"), "b")
        self.assertEqual(translator.value("Alpha"), "a")
        self.assertEqual(translator.value("Beta"), "Beta")
        self.assertIsNone(translator.label(None))

    def test_module_helpers_share_the_maps(self) -> None:
        self.assertEqual(status_value("Αναμονή για απάντηση πελάτη"), "wait_for_customer_answer")
        self.assertEqual(result_label("cancel"), "Ακύρωση")


class SectionsTest(unittest.TestCase):
    def _context(self, **values) -> FormContext:
        form = OfferFormState.defaults("cust-1", current_user_id="user-1")
        form.update(values)
        return FormContext(
            form=form,
            users=[{"id": "user-1", "full_name": "Maria P."}, {"id": "user-2", "email": "nikos@example.com"}],
            contacts=[{"id": "contact-1", "full_name": "Giorgos K."}],
        )

    def test_sections_render_placeholder_without_context(self) -> None:
        rendered = render_sections(None)
        self.assertTrue(rendered)
        for section in rendered:
            self.assertTrue(section["loading"])
            self.assertEqual(section["loading"], LOADING_PLACEHOLDER["loading"])
            self.assertNotIn("fields", section)

    def test_sections_render_fields_with_context(self) -> None:
        rendered = {section["key"]: section for section in render_sections(self._context())}

        self.assertEqual(
            set(rendered),
            {"source", "status_result", "assignment", "certificate", "comments", "address"},
        )
        assignment = rendered["assignment"]["fields"]["assigned_to"]
        self.assertEqual(assignment["value"], "user-1")
        self.assertEqual(
            assignment["options"],
            [{"value": "user-1", "label": "Maria P."}, {"value": "user-2", "label": "nikos@example.com"}],
        )
        contact = rendered["source"]["fields"]["contact_id"]
        self.assertEqual(contact["options"], [{"value": "contact-1", "label": "Giorgos K."}])

    def test_result_is_disabled_until_ready(self) -> None:
        section = StatusResultSection()
        fields = section.render(self._context(result="success"))["fields"]
        self.assertTrue(fields["result"]["disabled"])
        self.assertEqual(fields["result"]["warning"], warning_message("result_requires_ready"))

        fields = section.render(self._context(status="ready", result="success"))["fields"]
        self.assertFalse(fields["result"]["disabled"])
        self.assertIsNone(fields["result"]["warning"])

    def test_certificate_disabled_without_flag(self) -> None:
        fields = CertificateSection().render(self._context())["fields"]
        self.assertTrue(fields["certificate"]["disabled"])

        fields = CertificateSection().render(self._context(hma=True))["fields"]
        self.assertFalse(fields["certificate"]["disabled"])

    def test_comments_section_reports_amount_error(self) -> None:
        fields = CommentsSection().render(self._context(amount="1.999"))["fields"]
        self.assertEqual(fields["amount"]["error"], error_message("amount_invalid"))

        fields = CommentsSection().render(self._context(amount="1.99"))["fields"]
        self.assertNotIn("error", fields["amount"])

    def test_each_section_writes_only_its_fields(self) -> None:
        context = self._context()
        written = StatusResultSection().apply(context, {"status": "ready", "town": "Athens"})

        self.assertEqual(written, ["status"])
        self.assertEqual(context.form.get("status"), "ready")
        self.assertIsNone(context.form.get("town"))

    def test_apply_sections_routes_values_to_owners(self) -> None:
        context = self._context()
        written = apply_sections(context, {"town": "Patra", "result": "failed", "assigned_to": "user-2"})

        self.assertEqual(sorted(written), ["assigned_to", "result", "town"])
        self.assertEqual(context.form.get("town"), "Patra")
        self.assertEqual(context.form.get("result"), "failed")
        self.assertEqual(context.form.get("assigned_to"), "user-2")

    def test_apply_without_context_is_noop(self) -> None:
        self.assertEqual(apply_sections(None, {"town": "Patra"}), [])


if __name__ == "__main__":
    unittest.main()
