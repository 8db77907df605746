from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "CRM Portal",
    "customer": "Πελάτης",
    "contact": "Επαφή",
    "offer": "Προσφορά",
    "offer_detail": "Λεπτομέρεια προσφοράς",
    "task": "Εργασία",
}


# Option lists keep the order the dialog presents them in.
SOURCE_OPTIONS: List[Dict[str, str]] = [
    {"value": "Email", "label": "Email"},
    {"value": "Phone", "label": "Τηλέφωνο"},
    {"value": "Site", "label": "Site"},
    {"value": "Physical", "label": "Φυσική Παρουσία"},
]

STATUS_OPTIONS: List[Dict[str, str]] = [
    {"value": "wait_for_our_answer", "label": "Αναμονή για απάντησή μας"},
    {"value": "wait_for_customer_answer", "label": "Αναμονή για απάντηση πελάτη"},
    {"value": "ready", "label": "Ολοκληρώθηκε"},
]

RESULT_OPTIONS: List[Dict[str, str]] = [
    {"value": "none", "label": "Κανένα"},
    {"value": "success", "label": "Επιτυχία"},
    {"value": "failed", "label": "Αποτυχία"},
    {"value": "cancel", "label": "Ακύρωση"},
    {"value": "waiting", "label": "Αναμονή"},
]

READY_STATUS = "ready"
EMPTY_RESULT = "none"
DEFAULT_SOURCE = "Email"
DEFAULT_STATUS = "wait_for_our_answer"

# Legacy spellings that older rows and clients still send.
SOURCE_ALIASES: Dict[str, str] = {
    "email": "Email",
    "phone": "Phone",
    "telephone": "Phone",
    "τηλέφωνο": "Phone",
    "site": "Site",
    "website": "Site",
    "ιστοσελίδα": "Site",
    "physical": "Physical",
    "in person": "Physical",
    "φυσική παρουσία": "Physical",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "Παρουσιάστηκε απρόσμενο σφάλμα.",
        "action_invalid": "Η ενέργεια δεν είναι έγκυρη.",
        "validation_error": "Τα στοιχεία της φόρμας δεν είναι έγκυρα.",
        "permission_denied": "Δεν έχετε δικαίωμα για αυτή την ενέργεια.",
        "auth_required": "Απαιτείται σύνδεση.",
        "invalid_credentials": "Λάθος στοιχεία σύνδεσης.",
        "rate_limited": "Πολλά αιτήματα. Δοκιμάστε ξανά σε λίγο.",
        "not_found": "Η εγγραφή δεν βρέθηκε.",
        "customer_not_found": "Ο πελάτης δεν βρέθηκε.",
        "contact_not_found": "Η επαφή δεν βρέθηκε.",
        "offer_not_found": "Η προσφορά δεν βρέθηκε.",
        "detail_not_found": "Η λεπτομέρεια δεν βρέθηκε.",
        "task_not_found": "Η εργασία δεν βρέθηκε.",
        "session_not_found": "Η φόρμα έκλεισε ή έληξε.",
        "company_name_required": "Η επωνυμία είναι υποχρεωτική.",
        "afm_invalid": "Το ΑΦΜ πρέπει να έχει 9 ψηφία.",
        "full_name_required": "Το ονοματεπώνυμο είναι υποχρεωτικό.",
        "contact_not_of_customer": "Η επαφή δεν ανήκει στον πελάτη.",
        "amount_invalid": "Το ποσό πρέπει να είναι έγκυρος αριθμός",
        "field_unknown": "Άγνωστο πεδίο φόρμας.",
        "category_required": "Η κατηγορία είναι υποχρεωτική.",
        "name_required": "Το όνομα είναι υποχρεωτικό.",
        "price_invalid": "Η τιμή πρέπει να είναι έγκυρος αριθμός.",
        "delete_confirmation_required": "Απαιτείται επιβεβαίωση διαγραφής.",
        "store_unavailable": "Σφάλμα επικοινωνίας με τη βάση δεδομένων.",
        "offer_create_failed": "Σφάλμα κατά την δημιουργία προσφοράς",
        "offer_update_failed": "Σφάλμα κατά την ενημέρωση προσφοράς",
        "offer_save_failed": "Σφάλμα κατά την αποθήκευση προσφοράς",
        "details_save_failed": "Σφάλμα κατά την αποθήκευση των λεπτομερειών",
        "detail_delete_failed": "Σφάλμα κατά τη διαγραφή λεπτομέρειας",
        "save_in_progress": "Η αποθήκευση βρίσκεται ήδη σε εξέλιξη.",
        "conflict": "Η ενέργεια συγκρούεται με άλλη αλλαγή σε εξέλιξη.",
    },
    "success": {
        "offer_saved": "Η προσφορά αποθηκεύτηκε επιτυχώς",
        "offer_deleted": "Η προσφορά διαγράφηκε",
        "customer_saved": "Ο πελάτης αποθηκεύτηκε",
        "customer_deleted": "Ο πελάτης απενεργοποιήθηκε",
        "contact_saved": "Η επαφή αποθηκεύτηκε",
        "contact_deleted": "Η επαφή διαγράφηκε",
    },
    "warning": {
        "result_requires_ready": "Το αποτέλεσμα ορίζεται μόνο όταν η κατάσταση είναι «Ολοκληρώθηκε».",
        "details_not_saved": "Οι λεπτομέρειες της προσφοράς δεν αποθηκεύτηκαν.",
        "updated_elsewhere": "Η προσφορά ενημερώθηκε από άλλο χρήστη.",
        "nothing_new_selected": "Δεν επιλέχθηκαν νέες κατηγορίες.",
        "possible_duplicates": "Βρέθηκαν πελάτες με παρόμοια στοιχεία.",
    },
    "confirm": {
        "delete_detail": "Θέλετε σίγουρα να διαγράψετε αυτή τη λεπτομέρεια;",
        "delete_offer": "Θέλετε σίγουρα να διαγράψετε αυτή την προσφορά;",
        "delete_contact": "Θέλετε σίγουρα να διαγράψετε αυτή την επαφή;",
    },
}


FOLLOWUP_TEXTS: Dict[str, Dict[str, str]] = {
    "offer_review": {
        "title": "Έλεγχος νέας προσφοράς",
        "description": "Σας ανατέθηκε νέα προσφορά για τον πελάτη {customer}.",
    },
    "offer_reassigned": {
        "title": "Ανάθεση προσφοράς",
        "description": "Σας ανατέθηκε η προσφορά για τον πελάτη {customer}.",
    },
    "offer_result_pending": {
        "title": "Καταχώρηση αποτελέσματος",
        "description": "Η προσφορά για τον πελάτη {customer} ολοκληρώθηκε χωρίς αποτέλεσμα.",
    },
}


def _label_map(options: List[Dict[str, str]]) -> Dict[str, str]:
    return {item["value"]: item["label"] for item in options}


SOURCE_LABELS = _label_map(SOURCE_OPTIONS)
STATUS_LABELS = _label_map(STATUS_OPTIONS)
RESULT_LABELS = _label_map(RESULT_OPTIONS)


def get_message(category: str, key: str, default: str | None = None) -> str:
    bucket = MESSAGES.get(category) or {}
    value = bucket.get(key)
    if value:
        return value
    return default if default is not None else key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def warning_message(key: str, default: str | None = None) -> str:
    return get_message("warning", key, default)


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def followup_text(kind: str, **context: str) -> Dict[str, str]:
    template = FOLLOWUP_TEXTS.get(kind) or {"title": kind, "description": ""}
    return {
        "title": template["title"],
        "description": template["description"].format(**context) if context else template["description"],
    }


def option_values(options: List[Dict[str, str]]) -> List[str]:
    return [item["value"] for item in options]


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "source_options": SOURCE_OPTIONS,
        "status_options": STATUS_OPTIONS,
        "result_options": RESULT_OPTIONS,
        "messages": MESSAGES,
    }
