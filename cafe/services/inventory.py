from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from cafe.core.config import STOCK_CAS_RETRIES
from cafe.models.product import Product
from cafe.services.errors import (
    ConcurrentUpdateError,
    InactiveProductError,
    OrderValidationError,
    OutOfStockError,
    ProductNotFoundError,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_positive(quantity: int) -> int:
    try:
        value = int(quantity)
    except (TypeError, ValueError) as exc:
        raise OrderValidationError("Quantidade inválida") from exc
    if value <= 0:
        raise OrderValidationError("Quantidade deve ser maior que zero")
    return value


class InventoryLedger:
    """Per-product stock counter.

    Every mutation is a single conditional UPDATE so the database serializes
    concurrent writers on the same row; application code never writes back a
    stock value it read earlier. The ledger only flushes SQL into the caller's
    session: committing or rolling back is the caller's job.
    """

    def __init__(self, db: Session, *, cas_retries: int = STOCK_CAS_RETRIES) -> None:
        self.db = db
        self.cas_retries = max(1, cas_retries)

    def get(self, product_id: str) -> Product:
        product = self.db.get(Product, product_id, populate_existing=True)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def try_decrement(self, product_id: str, quantity: int) -> None:
        quantity = _ensure_positive(quantity)
        updated = (
            self.db.query(Product)
            .filter(
                Product.id == product_id,
                Product.active.is_(True),
                Product.stock >= quantity,
            )
            .update(
                {Product.stock: Product.stock - quantity, Product.updated_at: _utcnow()},
                synchronize_session=False,
            )
        )
        if updated:
            self._expire(product_id)
            logger.info(
                "Stock decreased product_id=%s quantity=%s",
                product_id,
                quantity,
                extra={"product_id": product_id},
            )
            return

        # Nenhuma linha casou: descobre o motivo relendo o produto
        product = self.get(product_id)
        if not product.active:
            raise InactiveProductError(product.id, product.name)
        raise OutOfStockError(product.id, product.name, int(product.stock or 0), quantity)

    def increment(self, product_id: str, quantity: int) -> None:
        quantity = _ensure_positive(quantity)
        updated = (
            self.db.query(Product)
            .filter(Product.id == product_id)
            .update(
                {Product.stock: Product.stock + quantity, Product.updated_at: _utcnow()},
                synchronize_session=False,
            )
        )
        if not updated:
            raise ProductNotFoundError(product_id)
        self._expire(product_id)
        logger.info(
            "Stock increased product_id=%s quantity=%s",
            product_id,
            quantity,
            extra={"product_id": product_id},
        )

    def adjust(self, product_id: str, delta: int) -> Product:
        try:
            delta = int(delta)
        except (TypeError, ValueError) as exc:
            raise OrderValidationError("Ajuste inválido") from exc
        if delta == 0:
            raise OrderValidationError("Ajuste deve ser diferente de zero")
        if delta > 0:
            self.increment(product_id, delta)
        else:
            self.try_decrement(product_id, -delta)
        return self.get(product_id)

    def set_stock(self, product_id: str, new_stock: int) -> Product:
        """Admin override of the absolute stock value, applied as compare-and-swap."""
        if new_stock is None or int(new_stock) < 0:
            raise OrderValidationError("Estoque não pode ser negativo")
        new_stock = int(new_stock)

        for attempt in range(1, self.cas_retries + 1):
            observed = int(self.get(product_id).stock or 0)
            if observed == new_stock:
                return self.get(product_id)
            updated = (
                self.db.query(Product)
                .filter(Product.id == product_id, Product.stock == observed)
                .update(
                    {Product.stock: new_stock, Product.updated_at: _utcnow()},
                    synchronize_session=False,
                )
            )
            if updated:
                self._expire(product_id)
                logger.info(
                    "Stock set product_id=%s from=%s to=%s",
                    product_id,
                    observed,
                    new_stock,
                    extra={"product_id": product_id},
                )
                return self.get(product_id)
            logger.warning("Stock CAS lost race product_id=%s attempt=%s", product_id, attempt)

        raise ConcurrentUpdateError(f"Estoque do produto {product_id} foi alterado concorrentemente")

    def list_low_stock(self) -> list[Product]:
        return (
            self.db.query(Product)
            .filter(
                Product.active.is_(True),
                Product.stock > 0,
                Product.stock <= Product.stock_threshold,
            )
            .order_by(Product.stock.asc(), Product.name.asc())
            .all()
        )

    def list_out_of_stock(self) -> list[Product]:
        return (
            self.db.query(Product)
            .filter(Product.active.is_(True), Product.stock <= 0)
            .order_by(Product.name.asc())
            .all()
        )

    def count_low_stock(self) -> int:
        return (
            self.db.query(Product)
            .filter(
                Product.active.is_(True),
                Product.stock > 0,
                Product.stock <= Product.stock_threshold,
            )
            .count()
        )

    def _expire(self, product_id: str) -> None:
        for obj in list(self.db.identity_map.values()):
            if isinstance(obj, Product) and obj.id == product_id:
                self.db.expire(obj)
