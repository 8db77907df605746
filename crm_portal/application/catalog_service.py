from __future__ import annotations

import logging
from typing import Any, Dict, List

from crm_portal.errors import AppError, NotFoundError, ValidationError
from crm_portal.infrastructure.repositories import CategoryRepository, SubcategoryRepository, UnitRepository
from crm_portal.infrastructure.store import Store


class CatalogService:
    def __init__(self, store: Store) -> None:
        self.categories = CategoryRepository(store)
        self.subcategories = SubcategoryRepository(store)
        self.units = UnitRepository(store)
        self.logger = logging.getLogger("crm_portal.catalog")

    def category_tree(self) -> List[Dict[str, Any]]:
        """Categories with their subcategories, as the two-level picker shows them."""
        try:
            categories = self.categories.list_all()
            subcategories = self.subcategories.list_all()
        except AppError:
            self.logger.exception("catalog_load_failed")
            return []
        grouped: Dict[str, List[dict]] = {}
        for row in subcategories:
            grouped.setdefault(str(row["category_id"]), []).append(
                {"id": row["id"], "name": row["name"]}
            )
        return [
            {"id": row["id"], "name": row["name"], "subcategories": grouped.get(str(row["id"]), [])}
            for row in categories
        ]

    def list_units(self) -> List[dict]:
        try:
            return self.units.list_all()
        except AppError:
            self.logger.exception("units_load_failed")
            return []

    def names_index(self) -> Dict[str, Dict[str, str]]:
        return {
            "categories": {str(row["id"]): row["name"] for row in self.categories.list_all()},
            "subcategories": {str(row["id"]): row["name"] for row in self.subcategories.list_all()},
            "units": {str(row["id"]): row["name"] for row in self.units.list_all()},
        }

    def create_category(self, name: str) -> dict:
        return self.categories.insert({"name": self._required_name(name)})

    def create_subcategory(self, category_id: str, name: str) -> dict:
        if self.categories.get_by_id(category_id) is None:
            raise NotFoundError(payload={"category_id": category_id})
        return self.subcategories.insert({"category_id": category_id, "name": self._required_name(name)})

    def create_unit(self, name: str) -> dict:
        return self.units.insert({"name": self._required_name(name)})

    @staticmethod
    def _required_name(name: Any) -> str:
        value = str(name or "").strip()
        if not value:
            raise ValidationError(code="name_required", payload={"field": "name"})
        return value
