from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from cafe.core.roles import Role
from cafe.deps import get_current_user, get_order_engine, get_order_queries, require_role
from cafe.models.user import User
from cafe.schemas.orders import (
    AssignChefRequest,
    AssignWaiterRequest,
    CreateOrderRequest,
    OrderPage,
    OrderRead,
    UpdateOrderStatusRequest,
)
from cafe.services.errors import (
    AccessDeniedError,
    ConcurrentUpdateError,
    ForbiddenError,
    IllegalTransitionError,
    InactiveProductError,
    NotFoundError,
    OrderNotFoundError,
    OrderServiceError,
    OrderValidationError,
    OutOfStockError,
)
from cafe.services.order_queries import OrderQueryService
from cafe.services.orders import OrderLifecycleEngine, parse_status

router = APIRouter(prefix="/api/orders", tags=["orders"])

logger = logging.getLogger(__name__)

STAFF = [Role.ADMIN, Role.CHEF, Role.WAITER]


def _creation_error(exc: OrderServiceError) -> HTTPException:
    # Estoque/validação viram conflito para o cliente recarregar o cardápio
    if isinstance(exc, (OutOfStockError, InactiveProductError, NotFoundError, OrderValidationError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _update_error(exc: OrderServiceError) -> HTTPException:
    if isinstance(exc, OrderNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pedido não encontrado")
    if isinstance(exc, ConcurrentUpdateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    # Transição ilegal, papel sem permissão e validação: 400
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _read_error(exc: OrderServiceError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pedido não encontrado")
    if isinstance(exc, (AccessDeniedError, ForbiddenError)):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Acesso negado ao pedido")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _status_filter(raw: Optional[str]):
    if not raw:
        return None
    try:
        return parse_status(raw)
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: CreateOrderRequest,
    user: User = Depends(get_current_user),
    engine: OrderLifecycleEngine = Depends(get_order_engine),
):
    try:
        order = engine.create_order(
            payload.items,
            user.id,
            notes=payload.notes,
            table_booking_id=payload.table_booking_id,
        )
    except OrderServiceError as exc:
        logger.info("Order creation rejected user_id=%s reason=%s", user.id, exc)
        raise _creation_error(exc) from exc
    return OrderRead.model_validate(order)


@router.get("", response_model=OrderPage)
def list_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    _user: User = Depends(require_role([Role.ADMIN])),
    queries: OrderQueryService = Depends(get_order_queries),
):
    orders, total = queries.list_all(_status_filter(status_filter), page=page, size=size)
    return OrderPage(items=[OrderRead.model_validate(o) for o in orders], page=page, size=size, total=total)


@router.get("/my-orders", response_model=OrderPage)
def my_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    user: User = Depends(get_current_user),
    queries: OrderQueryService = Depends(get_order_queries),
):
    orders, total = queries.list_for_user(user.email, _status_filter(status_filter), page=page, size=size)
    return OrderPage(items=[OrderRead.model_validate(o) for o in orders], page=page, size=size, total=total)


@router.get("/chef-orders", response_model=List[OrderRead])
def chef_orders(
    user: User = Depends(require_role([Role.ADMIN, Role.CHEF])),
    queries: OrderQueryService = Depends(get_order_queries),
):
    return [OrderRead.model_validate(o) for o in queries.orders_for_chef(user.email)]


@router.get("/waiter-orders", response_model=List[OrderRead])
def waiter_orders(
    user: User = Depends(require_role([Role.ADMIN, Role.WAITER])),
    queries: OrderQueryService = Depends(get_order_queries),
):
    return [OrderRead.model_validate(o) for o in queries.orders_for_waiter(user.email)]


@router.get("/today", response_model=List[OrderRead])
def today_orders(
    _user: User = Depends(require_role(STAFF)),
    queries: OrderQueryService = Depends(get_order_queries),
):
    return [OrderRead.model_validate(o) for o in queries.today_orders()]


@router.get("/needing-chef", response_model=List[OrderRead])
def orders_needing_chef(
    _user: User = Depends(require_role(STAFF)),
    queries: OrderQueryService = Depends(get_order_queries),
):
    return [OrderRead.model_validate(o) for o in queries.needing_chef()]


@router.get("/needing-waiter", response_model=List[OrderRead])
def orders_needing_waiter(
    _user: User = Depends(require_role(STAFF)),
    queries: OrderQueryService = Depends(get_order_queries),
):
    return [OrderRead.model_validate(o) for o in queries.needing_waiter()]


@router.get("/stats")
def order_stats(
    _user: User = Depends(require_role(STAFF)),
    queries: OrderQueryService = Depends(get_order_queries),
):
    stats = queries.stats()
    stats["todayRevenue"] = str(stats["todayRevenue"])
    return stats


@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: str,
    user: User = Depends(get_current_user),
    queries: OrderQueryService = Depends(get_order_queries),
):
    try:
        order = queries.get_by_id(order_id, user.email)
    except OrderServiceError as exc:
        raise _read_error(exc) from exc
    return OrderRead.model_validate(order)


@router.put("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: str,
    payload: UpdateOrderStatusRequest,
    user: User = Depends(get_current_user),
    engine: OrderLifecycleEngine = Depends(get_order_engine),
):
    try:
        order = engine.update_status(
            order_id,
            payload.status,
            user.email,
            chef_id=payload.chef_id,
            waiter_id=payload.waiter_id,
        )
    except OrderServiceError as exc:
        logger.info("Status update rejected order_id=%s reason=%s", order_id, exc, extra={"order_id": order_id})
        raise _update_error(exc) from exc
    return OrderRead.model_validate(order)


@router.put("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: str,
    user: User = Depends(get_current_user),
    engine: OrderLifecycleEngine = Depends(get_order_engine),
):
    try:
        order = engine.cancel_order(order_id, user.email)
    except OrderServiceError as exc:
        raise _update_error(exc) from exc
    return OrderRead.model_validate(order)


@router.put("/{order_id}/assign-chef", response_model=OrderRead)
def assign_chef(
    order_id: str,
    payload: AssignChefRequest,
    _user: User = Depends(require_role([Role.ADMIN, Role.CHEF])),
    engine: OrderLifecycleEngine = Depends(get_order_engine),
):
    try:
        order = engine.assign_to_chef(order_id, payload.chef_id)
    except OrderServiceError as exc:
        raise _update_error(exc) from exc
    return OrderRead.model_validate(order)


@router.put("/{order_id}/assign-waiter", response_model=OrderRead)
def assign_waiter(
    order_id: str,
    payload: AssignWaiterRequest,
    _user: User = Depends(require_role(STAFF)),
    engine: OrderLifecycleEngine = Depends(get_order_engine),
):
    try:
        order = engine.assign_to_waiter(order_id, payload.waiter_id)
    except OrderServiceError as exc:
        raise _update_error(exc) from exc
    return OrderRead.model_validate(order)
