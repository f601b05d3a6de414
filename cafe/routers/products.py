from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from cafe.core.database import get_db
from cafe.core.roles import Role
from cafe.deps import get_inventory_ledger, require_role
from cafe.models.product import Product
from cafe.models.user import User
from cafe.schemas.products import ProductCreate, ProductRead, QuantityAdjustmentRequest, StockUpdateRequest
from cafe.services.errors import (
    ConcurrentUpdateError,
    InactiveProductError,
    NotFoundError,
    OrderServiceError,
    OutOfStockError,
)
from cafe.services.inventory import InventoryLedger

router = APIRouter(prefix="/api/products", tags=["products"])

logger = logging.getLogger(__name__)


def _stock_error(exc: OrderServiceError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Produto não encontrado")
    if isinstance(exc, (OutOfStockError, InactiveProductError, ConcurrentUpdateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("", response_model=List[ProductRead])
def list_products(
    category: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    query = db.query(Product).filter(Product.active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    return [ProductRead.model_validate(p) for p in query.order_by(Product.category, Product.name).all()]


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    _user: User = Depends(require_role([Role.ADMIN])),
    db: Session = Depends(get_db),
):
    product = Product(
        name=payload.name.strip(),
        category=payload.category.strip(),
        description=payload.description,
        price=payload.price,
        stock=payload.stock,
        stock_threshold=payload.stock_threshold,
        active=payload.active,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info("Product created product_id=%s", product.id, extra={"product_id": product.id})
    return ProductRead.model_validate(product)


@router.put("/{product_id}/stock", response_model=ProductRead)
def update_stock(
    product_id: str,
    payload: StockUpdateRequest,
    _user: User = Depends(require_role([Role.ADMIN])),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    try:
        product = ledger.set_stock(product_id, payload.stock)
        ledger.db.commit()
    except OrderServiceError as exc:
        ledger.db.rollback()
        raise _stock_error(exc) from exc
    return ProductRead.model_validate(ledger.get(product.id))


@router.put("/{product_id}/stock/adjust", response_model=ProductRead)
def adjust_stock(
    product_id: str,
    payload: QuantityAdjustmentRequest,
    _user: User = Depends(require_role([Role.ADMIN])),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    try:
        product = ledger.adjust(product_id, payload.delta)
        ledger.db.commit()
    except OrderServiceError as exc:
        ledger.db.rollback()
        raise _stock_error(exc) from exc
    return ProductRead.model_validate(ledger.get(product.id))


@router.put("/{product_id}/toggle-active", response_model=ProductRead)
def toggle_active(
    product_id: str,
    _user: User = Depends(require_role([Role.ADMIN])),
    db: Session = Depends(get_db),
):
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    product.active = not product.active
    product.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(product)
    logger.info(
        "Product active toggled product_id=%s active=%s",
        product.id,
        product.active,
        extra={"product_id": product.id},
    )
    return ProductRead.model_validate(product)


@router.get("/admin/low-stock", response_model=List[ProductRead])
def low_stock(
    _user: User = Depends(require_role([Role.ADMIN])),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    return [ProductRead.model_validate(p) for p in ledger.list_low_stock()]


@router.get("/admin/out-of-stock", response_model=List[ProductRead])
def out_of_stock(
    _user: User = Depends(require_role([Role.ADMIN])),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    return [ProductRead.model_validate(p) for p in ledger.list_out_of_stock()]
