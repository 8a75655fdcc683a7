# riphouse/routers/categories.py
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session

from riphouse import models, schemas
from riphouse.database import get_db
from riphouse.logic import categories
from riphouse.routers.common import translate_error
from riphouse.security import require_role

router = APIRouter(prefix="/categories", tags=["categories"])


def _out(cat: models.Category) -> schemas.CategoryOut:
    return schemas.CategoryOut.model_validate(cat)


@router.get("")
def list_categories(
    featured: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
):
    return schemas.envelope([_out(c) for c in categories.list_categories(db, featured=featured)])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_category(
    body: schemas.CategoryCreate,
    db: Session = Depends(get_db),
    _admin: models.User = Depends(require_role("admin")),
):
    try:
        cat = categories.create_category(
            db,
            slug=body.slug,
            name=body.name,
            parent_ids=body.parent_ids,
            is_featured=body.is_featured,
            sort_order=body.sort_order,
        )
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_out(cat))


@router.get("/{slug}")
def get_category(slug: str = Path(...), db: Session = Depends(get_db)):
    try:
        cat = categories.get_by_slug(db, slug)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(_out(cat))


@router.post("/{slug}/add-parent")
def add_parent(
    body: schemas.ParentRequest,
    slug: str = Path(...),
    db: Session = Depends(get_db),
    _admin: models.User = Depends(require_role("admin")),
):
    """자기 자신 / 사이클이 생기는 부모는 409."""
    try:
        cat = categories.add_parent(db, slug, body.parent_id)
    except Exception as e:
        db.rollback()
        translate_error(e)
    return schemas.envelope(_out(cat))


@router.post("/{slug}/remove-parent")
def remove_parent(
    body: schemas.ParentRequest,
    slug: str = Path(...),
    db: Session = Depends(get_db),
    _admin: models.User = Depends(require_role("admin")),
):
    try:
        cat = categories.remove_parent(db, slug, body.parent_id)
    except Exception as e:
        db.rollback()
        translate_error(e)
    return schemas.envelope(_out(cat))


@router.get("/{slug}/parents")
def get_parents(slug: str = Path(...), db: Session = Depends(get_db)):
    try:
        rows = categories.get_parents(db, slug)
    except Exception as e:
        translate_error(e)
    return schemas.envelope([_out(c) for c in rows])


@router.get("/{slug}/children")
def get_children(slug: str = Path(...), db: Session = Depends(get_db)):
    try:
        rows = categories.get_children(db, slug)
    except Exception as e:
        translate_error(e)
    return schemas.envelope([_out(c) for c in rows])


@router.get("/{slug}/hierarchy")
def get_hierarchy(slug: str = Path(...), db: Session = Depends(get_db)):
    try:
        h = categories.get_hierarchy(db, slug)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(
        schemas.CategoryHierarchyOut(
            category=_out(h["category"]),
            ancestors=[_out(c) for c in h["ancestors"]],
            paths=[[_out(c) for c in path] for path in h["paths"]],
        )
    )
