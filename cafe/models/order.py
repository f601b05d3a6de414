from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, DateTime, Enum, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from cafe.core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY_FOR_SERVICE = "READY_FOR_SERVICE"
    SERVED = "SERVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

_UNSET = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Referências fracas (só ids): usuário, chef, garçom e reserva podem sumir sem afetar o pedido
    user_id = Column(String(36), index=True, nullable=False)
    assigned_chef_id = Column(String(36), index=True, nullable=True)
    assigned_waiter_id = Column(String(36), index=True, nullable=True)
    table_booking_id = Column(String(64), nullable=True)

    notes = Column(Text, nullable=True)
    total_price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    status = Column(Enum(OrderStatus, native_enum=False, length=32), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_status = Column(
        Enum(PaymentStatus, native_enum=False, length=16),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    # Preenchido na leitura (OrderQueryService), nunca persistido
    customer_name = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def set_items(self, items: list) -> None:
        for position, item in enumerate(items):
            item.position = position
        self.items = list(items)
        self.recompute_total()

    def recompute_total(self) -> Decimal:
        total = sum((item.subtotal for item in self.items), Decimal("0.00"))
        self.total_price = total.quantize(Decimal("0.01"))
        return self.total_price

    def apply(
        self,
        *,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
        assigned_chef_id=_UNSET,
        assigned_waiter_id=_UNSET,
        now: datetime | None = None,
    ) -> "Order":
        """Aplica uma atualização explícita e carimba updated_at uma única vez."""
        if status is not None:
            self.status = status
        if payment_status is not None:
            self.payment_status = payment_status
        if assigned_chef_id is not _UNSET:
            self.assigned_chef_id = assigned_chef_id
        if assigned_waiter_id is not _UNSET:
            self.assigned_waiter_id = assigned_waiter_id
        self.updated_at = now or _utcnow()
        return self
