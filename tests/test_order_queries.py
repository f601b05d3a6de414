from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cafe.models  # noqa: F401
from cafe.core.database import Base
from cafe.core.roles import Role
from cafe.models.order import Order, OrderStatus, PaymentStatus
from cafe.models.order_item import OrderItem
from cafe.models.product import Product
from cafe.models.user import User
from cafe.services.errors import AccessDeniedError, OrderNotFoundError, UserNotFoundError
from cafe.services.order_queries import OrderQueryService
from tests.fixtures_data import ADMIN, ALL_PRODUCTS, ALL_USERS, CHEF, CUSTOMER, OTHER_CUSTOMER, WAITER

TODAY = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _build_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    for data in ALL_USERS:
        db.add(User(password_hash="hashed", **{**data, "role": Role(data["role"])}))
    db.commit()
    return db


def _add_order(db, status=OrderStatus.PENDING, *, user_id=CUSTOMER["id"], created_at=TODAY, price="2.50", **extra):
    order = Order(
        user_id=user_id,
        status=status,
        payment_status=PaymentStatus.PENDING,
        created_at=created_at,
        **extra,
    )
    order.set_items([OrderItem(product_id="p-espresso", product_name="Espresso", unit_price=Decimal(price), quantity=2)])
    db.add(order)
    db.commit()
    return order.id


def test_get_by_id_allows_owner_and_admin_only():
    db = _build_session()
    queries = OrderQueryService(db)
    order_id = _add_order(db)

    assert queries.get_by_id(order_id, CUSTOMER["email"]).customer_name == "Joana"
    assert queries.get_by_id(order_id, ADMIN["email"]).id == order_id
    for outsider in (OTHER_CUSTOMER, CHEF, WAITER):
        with pytest.raises(AccessDeniedError):
            queries.get_by_id(order_id, outsider["email"])


def test_get_by_id_reports_missing_order_and_unknown_requester():
    db = _build_session()
    queries = OrderQueryService(db)
    order_id = _add_order(db)

    with pytest.raises(OrderNotFoundError):
        queries.get_by_id("missing", ADMIN["email"])
    with pytest.raises(UserNotFoundError):
        queries.get_by_id(order_id, "ghost@cafe.com.br")


def test_status_update_lookup_is_relaxed_for_staff():
    db = _build_session()
    queries = OrderQueryService(db)
    order_id = _add_order(db)

    for staff in (ADMIN, CHEF, WAITER, CUSTOMER):
        assert queries.get_for_status_update(order_id, staff["email"]).id == order_id
    with pytest.raises(AccessDeniedError):
        queries.get_for_status_update(order_id, OTHER_CUSTOMER["email"])


def test_attention_queues_only_list_unassigned_orders():
    db = _build_session()
    queries = OrderQueryService(db)
    needs_chef = _add_order(db, OrderStatus.CONFIRMED)
    _add_order(db, OrderStatus.CONFIRMED, assigned_chef_id=CHEF["id"])
    needs_waiter = _add_order(db, OrderStatus.READY_FOR_SERVICE, assigned_chef_id=CHEF["id"])
    _add_order(db, OrderStatus.READY_FOR_SERVICE, assigned_waiter_id=WAITER["id"])
    _add_order(db, OrderStatus.CANCELLED)

    assert [o.id for o in queries.needing_chef()] == [needs_chef]
    assert [o.id for o in queries.needing_waiter()] == [needs_waiter]


def test_worklists_follow_assignment():
    db = _build_session()
    queries = OrderQueryService(db)
    chef_order = _add_order(db, OrderStatus.PREPARING, assigned_chef_id=CHEF["id"])
    waiter_order = _add_order(db, OrderStatus.SERVED, assigned_waiter_id=WAITER["id"])

    assert [o.id for o in queries.orders_for_chef(CHEF["email"])] == [chef_order]
    assert [o.id for o in queries.orders_for_waiter(WAITER["email"])] == [waiter_order]


def test_list_for_user_filters_and_paginates():
    db = _build_session()
    queries = OrderQueryService(db)
    for hour in range(5):
        _add_order(db, created_at=TODAY.replace(hour=hour))
    _add_order(db, OrderStatus.CANCELLED)
    _add_order(db, user_id=OTHER_CUSTOMER["id"])

    page, total = queries.list_for_user(CUSTOMER["email"], page=0, size=4)
    assert total == 6
    assert len(page) == 4

    pending, pending_total = queries.list_for_user(CUSTOMER["email"], OrderStatus.PENDING, page=1, size=4)
    assert pending_total == 5
    assert len(pending) == 1

    everything, overall = queries.list_all()
    assert overall == 7
    assert {o.customer_name for o in everything} == {"Joana", "Pedro"}


def test_today_orders_and_stats_use_utc_day_bounds():
    db = _build_session()
    queries = OrderQueryService(db)
    _add_order(db, OrderStatus.PENDING, created_at=TODAY.replace(hour=8), price="3.00")
    _add_order(db, OrderStatus.PREPARING, created_at=TODAY.replace(hour=9), price="1.25")
    _add_order(db, OrderStatus.CANCELLED, created_at=TODAY.replace(hour=10), price="10.00")
    _add_order(db, OrderStatus.CONFIRMED, created_at=datetime(2026, 3, 9, 23, 59, tzinfo=timezone.utc))

    assert len(queries.today_orders(now=TODAY)) == 3

    stats = queries.stats(now=TODAY)
    assert stats["todayOrders"] == 3
    assert stats["todayRevenue"] == Decimal("8.50")
    assert stats["pendingOrders"] == 1
    assert stats["preparingOrders"] == 1
    assert stats["needingChef"] == 1


def test_stats_count_every_status_overall_and_today():
    db = _build_session()
    for data in ALL_PRODUCTS:
        db.add(Product(**data))
    db.commit()
    queries = OrderQueryService(db)
    for status in OrderStatus:
        _add_order(db, status, created_at=TODAY.replace(hour=9))
    yesterday = datetime(2026, 3, 9, 12, 0, tzinfo=timezone.utc)
    _add_order(db, OrderStatus.PENDING, created_at=yesterday)
    _add_order(db, OrderStatus.COMPLETED, created_at=yesterday)

    stats = queries.stats(now=TODAY)

    assert stats == {
        "totalOrders": 9,
        "pendingOrders": 2,
        "confirmedOrders": 1,
        "preparingOrders": 1,
        "readyOrders": 1,
        "servedOrders": 1,
        "completedOrders": 2,
        "cancelledOrders": 1,
        "todayOrders": 7,
        "todayPending": 1,
        "todayConfirmed": 1,
        "todayPreparing": 1,
        "todayCompleted": 1,
        "todayRevenue": Decimal("30.00"),
        "needingChef": 1,
        "needingWaiter": 1,
        "lowStockProducts": 1,
    }


def test_customer_name_falls_back_for_deleted_owner():
    db = _build_session()
    queries = OrderQueryService(db)
    order_id = _add_order(db, user_id="u-deleted")

    assert queries.populate(queries.load(order_id)).customer_name == "Customer"
