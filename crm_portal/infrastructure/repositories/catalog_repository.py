from __future__ import annotations

from crm_portal.infrastructure.repositories.base import BaseRepository


class CategoryRepository(BaseRepository):
    table_name = "service_categories"

    def list_all(self) -> list[dict]:
        return self.query().order("name").execute()


class SubcategoryRepository(BaseRepository):
    table_name = "service_subcategories"

    def list_all(self) -> list[dict]:
        return self.query().order("name").execute()

    def list_for_category(self, category_id: str) -> list[dict]:
        return self.query().eq("category_id", category_id).order("name").execute()


class UnitRepository(BaseRepository):
    table_name = "units"

    def list_all(self) -> list[dict]:
        return self.query().order("name").execute()
