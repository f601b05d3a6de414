# cafe/deps.py
from __future__ import annotations

import logging
from typing import Iterable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from cafe.core.database import get_db
from cafe.core.request_context import set_request_context
from cafe.core.roles import Role
from cafe.models.user import User
from cafe.services.auth import decode_access_token
from cafe.services.inventory import InventoryLedger
from cafe.services.order_events import OrderEventPublisher
from cafe.services.order_queries import OrderQueryService
from cafe.services.orders import OrderLifecycleEngine
from cafe.services.users import UserDirectory

# Swagger "Authorize" (OAuth2 password flow) vai chamar este endpoint:
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

logger = logging.getLogger(__name__)


def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Lê o JWT, valida e retorna o usuário ativo do banco."""
    try:
        payload = decode_access_token(token)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token inválido ou expirado",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token inválido (sem sub)",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.id == user_id, User.active.is_(True)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Usuário não encontrado",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user = user
    set_request_context(user_id=user.id)
    return user


def _log_access_denied(*, reason: str, user: User, request: Request) -> None:
    endpoint = f"{request.method} {request.url.path}"
    logger.warning(
        "Access denied (%s): user_id=%s user_role=%s endpoint=%s",
        reason,
        getattr(user, "id", None),
        getattr(getattr(user, "role", None), "value", None),
        endpoint,
    )


def require_role(roles: Iterable[Role | str]):
    allowed = {parsed for parsed in (Role.parse(role) for role in roles) if parsed is not None}

    def _dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if Role.parse(user.role) not in allowed:
            _log_access_denied(reason="role_denied", user=user, request=request)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permissão insuficiente")
        return user

    return _dependency


def get_inventory_ledger(db: Session = Depends(get_db)) -> InventoryLedger:
    return InventoryLedger(db)


def get_order_queries(db: Session = Depends(get_db)) -> OrderQueryService:
    return OrderQueryService(db, users=UserDirectory(db))


def get_order_engine(db: Session = Depends(get_db)) -> OrderLifecycleEngine:
    users = UserDirectory(db)
    return OrderLifecycleEngine(
        db,
        ledger=InventoryLedger(db),
        users=users,
        publisher=OrderEventPublisher(),
        queries=OrderQueryService(db, users=users),
    )
