from crm_portal.core.event_bus import (
    ContactDeleted,
    DomainEvent,
    EventBus,
    OfferDeleted,
    OfferSaved,
    TaskCreated,
    get_event_bus,
    init_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "OfferSaved",
    "OfferDeleted",
    "ContactDeleted",
    "TaskCreated",
    "get_event_bus",
    "init_event_bus",
    "reset_event_bus_for_tests",
]
