# riphouse/routers/auth.py
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from riphouse import crud, models, schemas
from riphouse.database import get_db
from riphouse.routers.common import translate_error
from riphouse.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    get_current_user,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(body: schemas.UserCreate, db: Session = Depends(get_db)):
    """user / seller 가입 (admin 은 가입 불가)."""
    try:
        user = crud.create_user(db, body)
    except Exception as e:
        translate_error(e)
    return schemas.envelope(schemas.UserOut.model_validate(user))


@router.post("/login", response_model=schemas.Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """이메일 + 비밀번호로 로그인하고 JWT 토큰 발급"""
    user = crud.get_user_by_email(db, form_data.username)
    if not user or not user.is_active or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Invalid email or password", "code": "UNAUTHORIZED"},
        )

    access_token = create_access_token(
        data={"sub": str(user.id), "role": user.role},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me")
def me(user: models.User = Depends(get_current_user)):
    return schemas.envelope(schemas.UserOut.model_validate(user))
