# riphouse/security.py
# JWT 인증 + 역할 기반 접근 제어
# RIPHOUSE_DEV_BYPASS=1 이면 토큰 없이 첫 번째 admin 으로 인증 (Swagger 개발 편의)

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from riphouse.database import get_db
from riphouse import models

logger = logging.getLogger(__name__)

# -----------------------------------------------------
# 🔧 기본 설정
# -----------------------------------------------------
SECRET_KEY = os.getenv("RIPHOUSE_SECRET_KEY", "riphouse-dev-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("RIPHOUSE_TOKEN_TTL_MINUTES", "60"))

DEV_BYPASS = os.getenv("RIPHOUSE_DEV_BYPASS", "0") == "1"

# admin > seller > user
ROLE_RANK = {
    models.UserRole.USER.value: 0,
    models.UserRole.SELLER.value: 1,
    models.UserRole.ADMIN.value: 2,
}

# -----------------------------------------------------
# 🔑 비밀번호 해싱
# -----------------------------------------------------
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


# -----------------------------------------------------
# 🪙 OAuth2 스키마 (Swagger Authorize와 연결)
# -----------------------------------------------------
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": message, "code": "UNAUTHORIZED"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_from_token(db: Session, token: str) -> models.User:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise _unauthorized("Invalid token payload")
    except JWTError:
        raise _unauthorized("Invalid token")

    user = db.get(models.User, int(user_id))
    if user is None or not user.is_active:
        raise _unauthorized("User not found")
    return user


def _dev_admin(db: Session) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.role == models.UserRole.ADMIN.value)
        .order_by(models.User.id.asc())
        .first()
    )


# -----------------------------------------------------
# 👤 현재 로그인한 유저
# -----------------------------------------------------
def get_current_user(
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
) -> models.User:
    if token:
        return _user_from_token(db, token)
    if DEV_BYPASS:
        admin = _dev_admin(db)
        if admin is not None:
            logger.warning("[security] DEV_BYPASS active: authenticated as %s", admin.email)
            return admin
    raise _unauthorized("Not authenticated")


def get_optional_user(
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
) -> Optional[models.User]:
    """공개 조회용: 토큰이 없으면 None (잘못된 토큰은 401)."""
    if token:
        return _user_from_token(db, token)
    if DEV_BYPASS:
        return _dev_admin(db)
    return None


def has_role(user: Optional[models.User], role: str) -> bool:
    if user is None:
        return False
    return ROLE_RANK.get(user.role, -1) >= ROLE_RANK[role]


def is_admin(user: Optional[models.User]) -> bool:
    return has_role(user, models.UserRole.ADMIN.value)


def require_role(role: str):
    def _dep(user: models.User = Depends(get_current_user)) -> models.User:
        if not has_role(user, role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "Access denied", "code": "ACCESS_DENIED"},
            )
        return user
    return _dep
