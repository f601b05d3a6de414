# cafe/routers/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from cafe.core.database import get_db
from cafe.core.roles import Role
from cafe.models.user import User
from cafe.services.auth import create_access_token, hash_password, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginPayload(BaseModel):
    username: EmailStr
    password: str


def _find_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()


def _issue_token(user: User) -> dict:
    token = create_access_token(
        str(user.id),
        extra={"email": user.email, "role": Role.parse(user.role).value},
    )
    return {"access_token": token, "token_type": "bearer"}


@router.post("/register", status_code=201)
def register(payload: RegisterPayload, db: Session = Depends(get_db)):
    # email único
    if _find_by_email(db, payload.email):
        raise HTTPException(status_code=409, detail="E-mail já cadastrado")

    # cadastro público sempre cria cliente; staff é criado pelo admin
    user = User(
        name=payload.name.strip(),
        email=payload.email.strip().lower(),
        password_hash=hash_password(payload.password),
        role=Role.CUSTOMER,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
    }


@router.post("/login")
def login(payload: LoginPayload, db: Session = Depends(get_db)):
    user = _find_by_email(db, payload.username)
    if not user or not user.active or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Credenciais inválidas")
    return _issue_token(user)


@router.post("/token")
def token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """Endpoint usado pelo botão Authorize do Swagger UI.

    Ele manda form-data com campos: username e password.
    """
    user = _find_by_email(db, form_data.username)
    if not user or not user.active or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Credenciais inválidas",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _issue_token(user)
