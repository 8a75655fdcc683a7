# riphouse/routers/shops.py
from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.orm import Session

from riphouse import crud, models, schemas
from riphouse.database import get_db
from riphouse.routers.common import translate_error
from riphouse.security import require_role

router = APIRouter(tags=["shops"])


@router.post("/shops", status_code=status.HTTP_201_CREATED)
def create_shop(
    body: schemas.ShopCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_role("seller")),
):
    try:
        shop = crud.create_shop(db, owner=user, data=body)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(schemas.ShopOut.model_validate(shop))


@router.get("/shops/{slug}")
def get_shop(slug: str = Path(...), db: Session = Depends(get_db)):
    try:
        shop = crud.get_shop_by_slug(db, slug)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(schemas.ShopOut.model_validate(shop))


@router.patch("/admin/shops/{shop_id}")
def admin_update_shop(
    body: schemas.ShopAdminUpdate,
    shop_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    _admin: models.User = Depends(require_role("admin")),
):
    """샵 인증/밴. 미인증/밴 샵의 경매는 소유자/관리자 외에는 보이지 않는다."""
    try:
        shop = crud.admin_update_shop(db, shop_id, body)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(schemas.ShopOut.model_validate(shop))
