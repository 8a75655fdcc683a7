# riphouse/logic/categories.py
"""
카테고리 다중 부모 DAG.

부모/자식 관계는 category_parents 엣지 하나로 저장되고
Category.parents / Category.children 두 방향으로 읽힌다 (한 트랜잭션에서 같이 바뀜).
"""
from __future__ import annotations

import logging
import re
from collections import deque
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from riphouse.config import project_rules as R
from riphouse.errors import ConflictError, NotFoundError, ValidationError
from riphouse.models import Category

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(R.SLUG_PATTERN)


def get_by_slug(db: Session, slug: str) -> Category:
    cat = db.query(Category).filter(Category.slug == slug).first()
    if not cat:
        raise NotFoundError(f"Category not found: {slug}")
    return cat


def _require(db: Session, category_id: int) -> Category:
    cat = db.get(Category, category_id)
    if not cat:
        raise NotFoundError(f"Category not found: {category_id}")
    return cat


def list_categories(db: Session, *, featured: Optional[bool] = None) -> List[Category]:
    q = db.query(Category)
    if featured is not None:
        q = q.filter(Category.is_featured.is_(featured))
    return q.order_by(Category.sort_order.asc(), Category.id.asc()).all()


def create_category(
    db: Session,
    *,
    slug: str,
    name: str,
    parent_ids: Optional[List[int]] = None,
    is_featured: bool = False,
    sort_order: int = 0,
) -> Category:
    if not _SLUG_RE.match(slug or ""):
        raise ValidationError(f"Invalid slug: {slug!r}")
    if db.query(Category.id).filter(Category.slug == slug).first():
        raise ConflictError(f"Slug already exists: {slug}")

    cat = Category(slug=slug, name=name, is_featured=is_featured, sort_order=sort_order)
    for pid in parent_ids or []:
        cat.parents.append(_require(db, pid))
    db.add(cat)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Slug already exists: {slug}") from e
    db.refresh(cat)
    return cat


def _ancestors(cat: Category) -> List[Category]:
    """BFS 순서의 조상 목록 (중복 없음)."""
    out: List[Category] = []
    seen: Set[int] = set()
    queue = deque(cat.parents)
    while queue:
        p = queue.popleft()
        if p.id in seen:
            continue
        seen.add(p.id)
        out.append(p)
        queue.extend(p.parents)
    return out


def add_parent(db: Session, slug: str, parent_id: int) -> Category:
    cat = get_by_slug(db, slug)
    parent = _require(db, parent_id)

    if parent.id == cat.id:
        raise ConflictError("A category cannot be its own parent")
    if parent in cat.parents:
        return cat
    # parent 의 조상에 cat 이 있으면 사이클
    if cat.id in {a.id for a in _ancestors(parent)}:
        raise ConflictError(f"Adding parent {parent.slug} would create a cycle")

    cat.parents.append(parent)
    db.add(cat)
    db.commit()
    db.refresh(cat)
    logger.info("[categories] %s +parent %s", cat.slug, parent.slug)
    return cat


def remove_parent(db: Session, slug: str, parent_id: int) -> Category:
    cat = get_by_slug(db, slug)
    parent = _require(db, parent_id)
    if parent not in cat.parents:
        raise NotFoundError(f"{parent.slug} is not a parent of {cat.slug}")

    cat.parents.remove(parent)
    db.add(cat)
    db.commit()
    db.refresh(cat)
    logger.info("[categories] %s -parent %s", cat.slug, parent.slug)
    return cat


def get_parents(db: Session, slug: str) -> List[Category]:
    return list(get_by_slug(db, slug).parents)


def get_children(db: Session, slug: str) -> List[Category]:
    return list(get_by_slug(db, slug).children)


def get_hierarchy(db: Session, slug: str) -> Dict[str, Any]:
    """
    조상 전체(BFS 순서)와 루트 → 자기 자신까지의 모든 경로.
    부모가 여럿이면 경로도 여럿.
    """
    cat = get_by_slug(db, slug)

    def _paths(node: Category) -> List[List[Category]]:
        if not node.parents:
            return [[node]]
        out: List[List[Category]] = []
        for p in node.parents:
            for path in _paths(p):
                out.append(path + [node])
        return out

    return {"category": cat, "ancestors": _ancestors(cat), "paths": _paths(cat)}


__all__ = [
    "get_by_slug",
    "list_categories",
    "create_category",
    "add_parent",
    "remove_parent",
    "get_parents",
    "get_children",
    "get_hierarchy",
]
