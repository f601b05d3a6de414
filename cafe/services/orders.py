from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cafe.core.roles import Role
from cafe.models.order import Order, OrderStatus, PaymentStatus
from cafe.models.order_item import OrderItem
from cafe.models.user import User
from cafe.services.errors import (
    ConcurrentUpdateError,
    ForbiddenError,
    IllegalTransitionError,
    InactiveProductError,
    OrderServiceError,
    OrderValidationError,
    OutOfStockError,
    ProductNotFoundError,
    UnknownStatusError,
)
from cafe.services.inventory import InventoryLedger
from cafe.services.order_events import NotificationPublisher, OrderEventPublisher
from cafe.services.order_queries import OrderQueryService
from cafe.services.users import UserDirectory

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY_FOR_SERVICE, OrderStatus.CANCELLED}),
    OrderStatus.READY_FOR_SERVICE: frozenset({OrderStatus.SERVED}),
    OrderStatus.SERVED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Status que cada papel pode pedir; a tabela de transição é checada depois
ROLE_TARGETS: dict[Role, frozenset[OrderStatus]] = {
    Role.ADMIN: frozenset(OrderStatus),
    Role.CHEF: frozenset({OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY_FOR_SERVICE}),
    Role.WAITER: frozenset({OrderStatus.SERVED}),
    Role.CUSTOMER: frozenset({OrderStatus.CANCELLED}),
}


def parse_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    raw = str(value or "").strip().upper()
    try:
        return OrderStatus(raw)
    except ValueError as exc:
        raise UnknownStatusError(value) from exc


def ensure_transition_allowed(current: OrderStatus, target: OrderStatus) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise IllegalTransitionError(current, target)


def ensure_role_allowed(role: Any, target: OrderStatus) -> Role:
    parsed = Role.parse(role)
    if parsed is None or target not in ROLE_TARGETS[parsed]:
        raise ForbiddenError(f"Perfil {getattr(role, 'value', role)} não pode definir o status {target.value}")
    return parsed


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: int

    @classmethod
    def coerce(cls, item: Any) -> "OrderLine":
        if isinstance(item, OrderLine):
            return item
        if isinstance(item, dict):
            product_id = item.get("product_id") or item.get("productId")
            quantity = item.get("quantity")
        else:
            product_id = getattr(item, "product_id", None)
            quantity = getattr(item, "quantity", None)
        if not product_id:
            raise OrderValidationError("Item sem produto")
        try:
            quantity = int(quantity)
        except (TypeError, ValueError) as exc:
            raise OrderValidationError("Quantidade inválida") from exc
        if quantity < 1:
            raise OrderValidationError("Quantidade deve ser maior que zero")
        return cls(product_id=str(product_id), quantity=quantity)


@dataclass(frozen=True)
class _Snapshot:
    name: str
    unit_price: Decimal


class OrderLifecycleEngine:
    """Creates orders against the inventory ledger and drives their status machine.

    Collaborators are passed in explicitly; the engine owns the session's
    transaction boundaries (commit on success, rollback on any failure).
    """

    def __init__(
        self,
        db: Session,
        *,
        ledger: InventoryLedger | None = None,
        users: UserDirectory | None = None,
        publisher: NotificationPublisher | None = None,
        queries: OrderQueryService | None = None,
    ) -> None:
        self.db = db
        self.ledger = ledger or InventoryLedger(db)
        self.users = users or UserDirectory(db)
        self.publisher = publisher or OrderEventPublisher()
        self.queries = queries or OrderQueryService(db, users=self.users)

    # -- creation ---------------------------------------------------------

    def create_order(
        self,
        items: Iterable[Any],
        user_id: str,
        *,
        notes: Optional[str] = None,
        table_booking_id: Optional[str] = None,
    ) -> Order:
        lines = [OrderLine.coerce(item) for item in (items or [])]
        if not user_id:
            raise OrderValidationError("Pedido precisa pertencer a um usuário")

        snapshots = self._validate_lines(lines)

        reserved: list[OrderLine] = []
        try:
            for line in lines:
                self.ledger.try_decrement(line.product_id, line.quantity)
                reserved.append(line)
        except OrderServiceError:
            self._release(reserved)
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            raise

        order = Order(
            user_id=user_id,
            notes=notes,
            table_booking_id=table_booking_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
        )
        order.set_items(
            [
                OrderItem(
                    product_id=line.product_id,
                    product_name=snapshots[line.product_id].name,
                    unit_price=snapshots[line.product_id].unit_price,
                    quantity=line.quantity,
                )
                for line in lines
            ]
        )
        self.db.add(order)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Failed to persist order user_id=%s", user_id)
            raise
        self.db.refresh(order)

        logger.info(
            "Order created order_id=%s user_id=%s items=%s total=%s",
            order.id,
            user_id,
            len(lines),
            order.total_price,
            extra={"order_id": order.id},
        )
        self.queries.populate(order)
        self._notify_created(order)
        return order

    def _validate_lines(self, lines: list[OrderLine]) -> dict[str, _Snapshot]:
        requested: dict[str, int] = {}
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        snapshots: dict[str, _Snapshot] = {}
        for product_id, quantity in requested.items():
            product = self.ledger.get(product_id)
            if not product.active:
                raise InactiveProductError(product.id, product.name)
            available = int(product.stock or 0)
            if available < quantity:
                raise OutOfStockError(product.id, product.name, available, quantity)
            snapshots[product_id] = _Snapshot(name=product.name, unit_price=Decimal(product.price))
        return snapshots

    def _release(self, reserved: list[OrderLine]) -> None:
        for line in reversed(reserved):
            try:
                self.ledger.increment(line.product_id, line.quantity)
            except Exception:
                logger.exception(
                    "Failed to release reserved stock product_id=%s quantity=%s",
                    line.product_id,
                    line.quantity,
                    extra={"product_id": line.product_id},
                )

    # -- status machine ---------------------------------------------------

    def update_status(
        self,
        order_id: str,
        new_status: Any,
        requester_email: str,
        *,
        chef_id: Optional[str] = None,
        waiter_id: Optional[str] = None,
    ) -> Order:
        target = parse_status(new_status)
        actor = self.users.get_by_email(requester_email)
        order = self.queries.load_actionable(order_id, actor, lock=True)
        role = ensure_role_allowed(actor.role, target)
        previous = order.status
        ensure_transition_allowed(previous, target)

        changes: dict[str, Any] = {}
        if target is OrderStatus.PREPARING:
            chef = self._resolve_assignee(chef_id, actor, role, Role.CHEF)
            if chef is not None:
                changes["assigned_chef_id"] = chef
        elif target is OrderStatus.SERVED:
            waiter = self._resolve_assignee(waiter_id, actor, role, Role.WAITER)
            if waiter is not None:
                changes["assigned_waiter_id"] = waiter
        elif target is OrderStatus.COMPLETED:
            changes["payment_status"] = PaymentStatus.PAID

        try:
            if target is OrderStatus.CANCELLED:
                self._restore_stock(order)
            order.apply(status=target, **changes)
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("Concurrent update on order_id=%s", order_id, extra={"order_id": order_id})
            raise ConcurrentUpdateError(f"Pedido {order_id} foi alterado concorrentemente") from exc
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info(
            "Order status changed order_id=%s %s -> %s by user_id=%s",
            order.id,
            previous.value,
            target.value,
            actor.id,
            extra={"order_id": order.id},
        )
        self.queries.populate(order)
        self._notify_updated(order, previous)
        return order

    def cancel_order(self, order_id: str, requester_email: str) -> Order:
        return self.update_status(order_id, OrderStatus.CANCELLED, requester_email)

    def _resolve_assignee(
        self,
        explicit_id: Optional[str],
        actor: User,
        actor_role: Role,
        required: Role,
    ) -> Optional[str]:
        if explicit_id:
            return self._require_staff(explicit_id, required).id
        if actor_role is required:
            return actor.id
        return None

    def _restore_stock(self, order: Order) -> None:
        for item in order.items:
            try:
                self.ledger.increment(item.product_id, item.quantity)
            except ProductNotFoundError:
                logger.warning(
                    "Cannot restore stock for missing product_id=%s on order_id=%s",
                    item.product_id,
                    order.id,
                    extra={"order_id": order.id, "product_id": item.product_id},
                )

    # -- assignment -------------------------------------------------------

    def assign_to_chef(self, order_id: str, chef_id: str) -> Order:
        chef = self._require_staff(chef_id, Role.CHEF)
        return self._assign(
            order_id,
            field="assigned_chef_id",
            assignee=chef,
            advance_from=OrderStatus.CONFIRMED,
            advance_to=OrderStatus.PREPARING,
        )

    def assign_to_waiter(self, order_id: str, waiter_id: str) -> Order:
        waiter = self._require_staff(waiter_id, Role.WAITER)
        return self._assign(
            order_id,
            field="assigned_waiter_id",
            assignee=waiter,
            advance_from=OrderStatus.PREPARING,
            advance_to=OrderStatus.READY_FOR_SERVICE,
        )

    def _assign(
        self,
        order_id: str,
        *,
        field: str,
        assignee: User,
        advance_from: OrderStatus,
        advance_to: OrderStatus,
    ) -> Order:
        order = self.queries.load(order_id, lock=True)
        previous = order.status
        if order.is_terminal:
            raise IllegalTransitionError(previous, advance_to)

        new_status = advance_to if previous is advance_from else None
        if new_status is None and getattr(order, field) == assignee.id:
            self.db.rollback()
            return self.queries.populate(order)

        try:
            order.apply(status=new_status, **{field: assignee.id})
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrentUpdateError(f"Pedido {order_id} foi alterado concorrentemente") from exc
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info(
            "Order assigned order_id=%s %s=%s status=%s",
            order.id,
            field,
            assignee.id,
            order.status.value,
            extra={"order_id": order.id},
        )
        self.queries.populate(order)
        self._notify_updated(order, previous)
        return order

    def _require_staff(self, user_id: str, required: Role) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise OrderValidationError(f"Usuário não encontrado: {user_id}")
        if Role.parse(user.role) is not required:
            raise OrderValidationError(f"Usuário {user_id} não tem o perfil {required.value}")
        return user

    # -- notifications ----------------------------------------------------

    def _notify_created(self, order: Order) -> None:
        try:
            self.publisher.order_created(order)
        except Exception:
            logger.exception("Failed to broadcast order creation order_id=%s", order.id, extra={"order_id": order.id})

    def _notify_updated(self, order: Order, previous: OrderStatus) -> None:
        try:
            self.publisher.order_updated(order, previous_status=previous)
        except Exception:
            logger.exception("Failed to broadcast order update order_id=%s", order.id, extra={"order_id": order.id})
