import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text

from cafe.core.config import DEFAULT_STOCK_THRESHOLD
from cafe.core.database import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price > 0", name="ck_products_price_positive"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, default="")
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)

    # Só é alterado pelo InventoryLedger (UPDATE condicional)
    stock = Column(Integer, nullable=False, default=0)
    stock_threshold = Column(Integer, nullable=False, default=DEFAULT_STOCK_THRESHOLD)

    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    @property
    def is_out_of_stock(self) -> bool:
        return (self.stock or 0) <= 0

    @property
    def is_low_stock(self) -> bool:
        return 0 < (self.stock or 0) <= (self.stock_threshold or 0)
