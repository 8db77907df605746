from crm_portal.infrastructure.repositories.base import BaseRepository
from crm_portal.infrastructure.repositories.catalog_repository import (
    CategoryRepository,
    SubcategoryRepository,
    UnitRepository,
)
from crm_portal.infrastructure.repositories.contact_repository import ContactRepository
from crm_portal.infrastructure.repositories.customer_repository import CustomerRepository
from crm_portal.infrastructure.repositories.offer_detail_repository import OfferDetailRepository
from crm_portal.infrastructure.repositories.offer_repository import OfferHistoryRepository, OfferRepository
from crm_portal.infrastructure.repositories.task_repository import NotificationRepository, TaskRepository
from crm_portal.infrastructure.repositories.user_repository import TenantRepository, UserRepository

__all__ = [
    "BaseRepository",
    "CategoryRepository",
    "ContactRepository",
    "CustomerRepository",
    "NotificationRepository",
    "OfferDetailRepository",
    "OfferHistoryRepository",
    "OfferRepository",
    "SubcategoryRepository",
    "TaskRepository",
    "TenantRepository",
    "UnitRepository",
    "UserRepository",
]
