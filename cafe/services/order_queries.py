from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from cafe.core.config import DEFAULT_CUSTOMER_NAME
from cafe.core.roles import STAFF_ROLES, Role
from cafe.models.order import Order, OrderStatus
from cafe.models.user import User
from cafe.services.errors import AccessDeniedError, OrderNotFoundError
from cafe.services.inventory import InventoryLedger
from cafe.services.users import UserDirectory

logger = logging.getLogger(__name__)


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class OrderQueryService:
    """Read side of orders: lookups, visibility checks and dashboard views.

    Every returned order carries a transient ``customer_name``, resolved from
    the owning user or a placeholder when that user no longer exists.
    """

    def __init__(
        self,
        db: Session,
        *,
        users: UserDirectory | None = None,
        default_customer_name: str = DEFAULT_CUSTOMER_NAME,
    ) -> None:
        self.db = db
        self.users = users or UserDirectory(db)
        self.default_customer_name = default_customer_name

    # -- visibility -------------------------------------------------------

    @staticmethod
    def can_view(order: Order, user: User) -> bool:
        return Role.parse(user.role) is Role.ADMIN or order.user_id == user.id

    @staticmethod
    def can_act_on(order: Order, user: User) -> bool:
        return Role.parse(user.role) in STAFF_ROLES or order.user_id == user.id

    # -- single order -----------------------------------------------------

    def load(self, order_id: str, *, lock: bool = False) -> Order:
        query = self.db.query(Order).filter(Order.id == order_id).populate_existing()
        if lock:
            query = query.with_for_update()
        order = query.first()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def get_by_id(self, order_id: str, requester_email: str) -> Order:
        user = self.users.get_by_email(requester_email)
        order = self.load(order_id)
        if not self.can_view(order, user):
            logger.warning(
                "Order access denied order_id=%s user_id=%s",
                order_id,
                user.id,
                extra={"order_id": order_id},
            )
            raise AccessDeniedError(order_id)
        return self.populate(order)

    def get_for_status_update(self, order_id: str, requester_email: str, *, lock: bool = False) -> Order:
        user = self.users.get_by_email(requester_email)
        return self.load_actionable(order_id, user, lock=lock)

    def load_actionable(self, order_id: str, user: User, *, lock: bool = False) -> Order:
        order = self.load(order_id, lock=lock)
        if not self.can_act_on(order, user):
            raise AccessDeniedError(order_id)
        return order

    # -- lists ------------------------------------------------------------

    def list_all(
        self,
        status: Optional[OrderStatus] = None,
        *,
        page: int = 0,
        size: int = 20,
    ) -> tuple[list[Order], int]:
        query = self.db.query(Order)
        if status is not None:
            query = query.filter(Order.status == status)
        return self._page(query, page, size)

    def list_for_user(
        self,
        requester_email: str,
        status: Optional[OrderStatus] = None,
        *,
        page: int = 0,
        size: int = 20,
    ) -> tuple[list[Order], int]:
        user = self.users.get_by_email(requester_email)
        query = self.db.query(Order).filter(Order.user_id == user.id)
        if status is not None:
            query = query.filter(Order.status == status)
        return self._page(query, page, size)

    def needing_chef(self) -> list[Order]:
        orders = (
            self.db.query(Order)
            .filter(Order.status == OrderStatus.CONFIRMED, Order.assigned_chef_id.is_(None))
            .order_by(Order.created_at.asc())
            .all()
        )
        return self.populate_all(orders)

    def needing_waiter(self) -> list[Order]:
        orders = (
            self.db.query(Order)
            .filter(Order.status == OrderStatus.READY_FOR_SERVICE, Order.assigned_waiter_id.is_(None))
            .order_by(Order.created_at.asc())
            .all()
        )
        return self.populate_all(orders)

    def orders_for_chef(self, chef_email: str) -> list[Order]:
        chef = self.users.get_by_email(chef_email)
        orders = (
            self.db.query(Order)
            .filter(Order.assigned_chef_id == chef.id)
            .order_by(Order.created_at.desc())
            .all()
        )
        return self.populate_all(orders)

    def orders_for_waiter(self, waiter_email: str) -> list[Order]:
        waiter = self.users.get_by_email(waiter_email)
        orders = (
            self.db.query(Order)
            .filter(Order.assigned_waiter_id == waiter.id)
            .order_by(Order.created_at.desc())
            .all()
        )
        return self.populate_all(orders)

    def today_orders(self, now: Optional[datetime] = None) -> list[Order]:
        start, end = _day_bounds(now or datetime.now(timezone.utc))
        orders = (
            self.db.query(Order)
            .filter(Order.created_at >= start, Order.created_at < end)
            .order_by(Order.created_at.desc())
            .all()
        )
        return self.populate_all(orders)

    def stats(self, now: Optional[datetime] = None) -> dict:
        start, end = _day_bounds(now or datetime.now(timezone.utc))

        def _count(*criteria) -> int:
            return self.db.query(func.count(Order.id)).filter(*criteria).scalar() or 0

        today = (Order.created_at >= start, Order.created_at < end)
        revenue = (
            self.db.query(func.coalesce(func.sum(Order.total_price), 0))
            .filter(*today, Order.status != OrderStatus.CANCELLED)
            .scalar()
        )
        return {
            "totalOrders": _count(),
            "pendingOrders": _count(Order.status == OrderStatus.PENDING),
            "confirmedOrders": _count(Order.status == OrderStatus.CONFIRMED),
            "preparingOrders": _count(Order.status == OrderStatus.PREPARING),
            "readyOrders": _count(Order.status == OrderStatus.READY_FOR_SERVICE),
            "servedOrders": _count(Order.status == OrderStatus.SERVED),
            "completedOrders": _count(Order.status == OrderStatus.COMPLETED),
            "cancelledOrders": _count(Order.status == OrderStatus.CANCELLED),
            "todayOrders": _count(*today),
            "todayPending": _count(*today, Order.status == OrderStatus.PENDING),
            "todayConfirmed": _count(*today, Order.status == OrderStatus.CONFIRMED),
            "todayPreparing": _count(*today, Order.status == OrderStatus.PREPARING),
            "todayCompleted": _count(*today, Order.status == OrderStatus.COMPLETED),
            "todayRevenue": Decimal(str(revenue or 0)).quantize(Decimal("0.01")),
            "needingChef": _count(Order.status == OrderStatus.CONFIRMED, Order.assigned_chef_id.is_(None)),
            "needingWaiter": _count(
                Order.status == OrderStatus.READY_FOR_SERVICE,
                Order.assigned_waiter_id.is_(None),
            ),
            "lowStockProducts": InventoryLedger(self.db).count_low_stock(),
        }

    # -- customer names ---------------------------------------------------

    def populate(self, order: Order) -> Order:
        self.populate_all([order])
        return order

    def populate_all(self, orders: Iterable[Order]) -> list[Order]:
        orders = list(orders)
        names = self.users.names_by_id({order.user_id for order in orders})
        for order in orders:
            order.customer_name = names.get(order.user_id) or self.default_customer_name
        return orders

    def _page(self, query, page: int, size: int) -> tuple[list[Order], int]:
        page = max(0, int(page))
        size = min(max(1, int(size)), 100)
        total = query.count()
        orders = query.order_by(Order.created_at.desc()).offset(page * size).limit(size).all()
        return self.populate_all(orders), total
