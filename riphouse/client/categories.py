# riphouse/client/categories.py
from __future__ import annotations

from typing import List, Optional

from riphouse.client.api import ApiClient, log_errors, unwrap
from riphouse.client.types import Category, CategoryHierarchy


def _categories(body) -> List[Category]:
    return [Category.from_api(c) for c in unwrap(body) or []]


class CategoriesService:
    def __init__(self, api: ApiClient):
        self.api = api

    @log_errors("categories.list")
    def list(self, featured: Optional[bool] = None) -> List[Category]:
        params = None if featured is None else {"featured": "true" if featured else "false"}
        return _categories(self.api.get("/categories", params))

    @log_errors("categories.get")
    def get(self, slug: str) -> Category:
        return Category.from_api(unwrap(self.api.get(f"/categories/{slug}")))

    @log_errors("categories.create")
    def create(
        self,
        slug: str,
        name: str,
        parent_ids: Optional[List[int]] = None,
        is_featured: bool = False,
        sort_order: int = 0,
    ) -> Category:
        body = self.api.post(
            "/categories",
            {
                "slug": slug,
                "name": name,
                "parentIds": list(parent_ids or []),
                "isFeatured": is_featured,
                "sortOrder": sort_order,
            },
        )
        return Category.from_api(unwrap(body))

    @log_errors("categories.add_parent")
    def add_parent(self, slug: str, parent_id: int) -> Category:
        return Category.from_api(unwrap(self.api.post(f"/categories/{slug}/add-parent", {"parentId": int(parent_id)})))

    @log_errors("categories.remove_parent")
    def remove_parent(self, slug: str, parent_id: int) -> Category:
        return Category.from_api(unwrap(self.api.post(f"/categories/{slug}/remove-parent", {"parentId": int(parent_id)})))

    @log_errors("categories.get_parents")
    def get_parents(self, slug: str) -> List[Category]:
        return _categories(self.api.get(f"/categories/{slug}/parents"))

    @log_errors("categories.get_children")
    def get_children(self, slug: str) -> List[Category]:
        return _categories(self.api.get(f"/categories/{slug}/children"))

    @log_errors("categories.get_hierarchy")
    def get_hierarchy(self, slug: str) -> CategoryHierarchy:
        return CategoryHierarchy.from_api(unwrap(self.api.get(f"/categories/{slug}/hierarchy")))


__all__ = ["CategoriesService"]
