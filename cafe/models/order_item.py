from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from cafe.core.database import Base


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),)

    id = Column(Integer, primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), index=True, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # Snapshot do catálogo no momento do pedido
    product_id = Column(String(36), nullable=False)
    product_name = Column(String, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.unit_price or 0) * int(self.quantity or 0)
