import threading
from decimal import Decimal
from itertools import product as cartesian

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

import cafe.models  # noqa: F401
from cafe.core.database import Base
from cafe.core.roles import Role
from cafe.models.order import Order, OrderStatus, PaymentStatus
from cafe.models.order_item import OrderItem
from cafe.models.product import Product
from cafe.models.user import User
from cafe.services.errors import (
    AccessDeniedError,
    ConcurrentUpdateError,
    ForbiddenError,
    IllegalTransitionError,
    OrderNotFoundError,
    OrderValidationError,
    UnknownStatusError,
)
from cafe.services.inventory import InventoryLedger
from cafe.services.orders import OrderLifecycleEngine, OrderLine
from tests.fixtures_data import (
    ADMIN,
    ALL_PRODUCTS,
    ALL_USERS,
    CHEF,
    CROISSANT,
    CUSTOMER,
    ESPRESSO,
    OTHER_CHEF,
    OTHER_CUSTOMER,
    WAITER,
)

S = OrderStatus

LEGAL = {
    (S.PENDING, S.CONFIRMED),
    (S.PENDING, S.CANCELLED),
    (S.CONFIRMED, S.PREPARING),
    (S.CONFIRMED, S.CANCELLED),
    (S.PREPARING, S.READY_FOR_SERVICE),
    (S.PREPARING, S.CANCELLED),
    (S.READY_FOR_SERVICE, S.SERVED),
    (S.SERVED, S.COMPLETED),
}

PREDECESSOR = {
    S.CONFIRMED: S.PENDING,
    S.PREPARING: S.CONFIRMED,
    S.READY_FOR_SERVICE: S.PREPARING,
    S.SERVED: S.READY_FOR_SERVICE,
    S.COMPLETED: S.SERVED,
    S.CANCELLED: S.PENDING,
}

ALLOWED_BY_ROLE = {
    "ADMIN": set(PREDECESSOR),
    "CHEF": {S.CONFIRMED, S.PREPARING, S.READY_FOR_SERVICE},
    "WAITER": {S.SERVED},
    "CUSTOMER": {S.CANCELLED},
}

ACTORS = {"ADMIN": ADMIN, "CHEF": CHEF, "WAITER": WAITER, "CUSTOMER": CUSTOMER}


class RecordingPublisher:
    def __init__(self):
        self.created = []
        self.updated = []

    def order_created(self, order):
        self.created.append(order.id)

    def order_updated(self, order, previous_status=None):
        self.updated.append((order.id, previous_status, order.status))


class BrokenPublisher:
    def order_created(self, order):
        raise RuntimeError("broker offline")

    def order_updated(self, order, previous_status=None):
        raise RuntimeError("broker offline")


def _seed(db):
    for data in ALL_USERS:
        db.add(User(password_hash="hashed", **{**data, "role": Role(data["role"])}))
    for data in ALL_PRODUCTS:
        db.add(Product(**data))
    db.commit()


def _build_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    _seed(db)
    return db


def _build_engine(db, publisher=None):
    return OrderLifecycleEngine(db, publisher=publisher or RecordingPublisher())


def _seed_order(db, status, *, user_id=CUSTOMER["id"], chef_id=None, waiter_id=None, payment=PaymentStatus.PENDING):
    order = Order(
        user_id=user_id,
        status=status,
        payment_status=payment,
        assigned_chef_id=chef_id,
        assigned_waiter_id=waiter_id,
    )
    order.set_items(
        [OrderItem(product_id=ESPRESSO["id"], product_name="Espresso", unit_price=Decimal("2.50"), quantity=1)]
    )
    db.add(order)
    db.commit()
    return order.id


def _stock(db, product_id):
    return InventoryLedger(db).get(product_id).stock


def _status(db, order_id):
    return db.get(Order, order_id, populate_existing=True).status


@pytest.mark.parametrize("current,target", list(cartesian(OrderStatus, OrderStatus)))
def test_transition_table_is_exact(current, target):
    db = _build_session()
    order_id = _seed_order(db, current)
    engine = _build_engine(db)

    if (current, target) in LEGAL:
        order = engine.update_status(order_id, target, ADMIN["email"])
        assert order.status == target
    else:
        with pytest.raises(IllegalTransitionError):
            engine.update_status(order_id, target, ADMIN["email"])
        assert _status(db, order_id) == current


@pytest.mark.parametrize("role,target", list(cartesian(ACTORS, PREDECESSOR)))
def test_role_capabilities(role, target):
    db = _build_session()
    order_id = _seed_order(db, PREDECESSOR[target])
    engine = _build_engine(db)

    if target in ALLOWED_BY_ROLE[role]:
        assert engine.update_status(order_id, target, ACTORS[role]["email"]).status == target
    else:
        with pytest.raises(ForbiddenError):
            engine.update_status(order_id, target, ACTORS[role]["email"])
        assert _status(db, order_id) == PREDECESSOR[target]


def test_customer_cannot_cancel_someone_elses_order():
    db = _build_session()
    order_id = _seed_order(db, S.PENDING, user_id=OTHER_CUSTOMER["id"])

    with pytest.raises(ForbiddenError) as exc:
        _build_engine(db).cancel_order(order_id, CUSTOMER["email"])

    assert isinstance(exc.value, AccessDeniedError)
    assert _status(db, order_id) == S.PENDING
    assert _stock(db, ESPRESSO["id"]) == 10


def test_waiter_cannot_confirm_even_though_the_transition_is_legal():
    db = _build_session()
    order_id = _seed_order(db, S.PENDING)

    with pytest.raises(ForbiddenError):
        _build_engine(db).update_status(order_id, "CONFIRMED", WAITER["email"])


def test_role_is_checked_before_the_transition_table():
    db = _build_session()
    order_id = _seed_order(db, S.COMPLETED)

    with pytest.raises(ForbiddenError):
        _build_engine(db).update_status(order_id, S.CONFIRMED, WAITER["email"])


def test_status_names_are_case_insensitive_and_unknown_names_are_rejected():
    db = _build_session()
    order_id = _seed_order(db, S.PENDING)
    engine = _build_engine(db)

    assert engine.update_status(order_id, "confirmed", CHEF["email"]).status == S.CONFIRMED
    with pytest.raises(UnknownStatusError):
        engine.update_status(order_id, "ON_THE_WAY", CHEF["email"])


def test_missing_order_raises_not_found():
    db = _build_session()

    with pytest.raises(OrderNotFoundError):
        _build_engine(db).update_status("missing", S.CONFIRMED, ADMIN["email"])


def test_confirm_then_cancel_restores_stock_to_pre_order_levels():
    db = _build_session()
    engine = _build_engine(db)
    order = engine.create_order(
        [OrderLine(ESPRESSO["id"], 4), OrderLine(CROISSANT["id"], 3)],
        CUSTOMER["id"],
    )
    assert _stock(db, ESPRESSO["id"]) == 6
    assert _stock(db, CROISSANT["id"]) == 0

    engine.update_status(order.id, S.CONFIRMED, CHEF["email"])
    cancelled = engine.cancel_order(order.id, CUSTOMER["email"])

    assert cancelled.status == S.CANCELLED
    assert _stock(db, ESPRESSO["id"]) == 10
    assert _stock(db, CROISSANT["id"]) == 3


def test_completion_forces_paid_regardless_of_prior_payment_status():
    db = _build_session()
    order_id = _seed_order(db, S.SERVED, payment=PaymentStatus.PENDING)

    order = _build_engine(db).update_status(order_id, S.COMPLETED, ADMIN["email"])

    assert order.status == S.COMPLETED
    assert order.payment_status == PaymentStatus.PAID


def test_preparing_self_assigns_chef_or_uses_explicit_chef():
    db = _build_session()
    engine = _build_engine(db)
    first = _seed_order(db, S.CONFIRMED)
    second = _seed_order(db, S.CONFIRMED)

    assert engine.update_status(first, S.PREPARING, CHEF["email"]).assigned_chef_id == CHEF["id"]
    explicit = engine.update_status(second, S.PREPARING, ADMIN["email"], chef_id=OTHER_CHEF["id"])
    assert explicit.assigned_chef_id == OTHER_CHEF["id"]


def test_explicit_assignee_with_wrong_role_applies_nothing():
    db = _build_session()
    order_id = _seed_order(db, S.CONFIRMED)

    with pytest.raises(OrderValidationError):
        _build_engine(db).update_status(order_id, S.PREPARING, ADMIN["email"], chef_id=WAITER["id"])

    stored = db.get(Order, order_id, populate_existing=True)
    assert stored.status == S.CONFIRMED
    assert stored.assigned_chef_id is None


def test_ready_for_service_keeps_assignments_and_served_self_assigns_waiter():
    db = _build_session()
    engine = _build_engine(db)
    order_id = _seed_order(db, S.PREPARING, chef_id=CHEF["id"])

    ready = engine.update_status(order_id, S.READY_FOR_SERVICE, CHEF["email"])
    assert ready.assigned_chef_id == CHEF["id"]
    assert ready.assigned_waiter_id is None

    served = engine.update_status(order_id, S.SERVED, WAITER["email"])
    assert served.assigned_waiter_id == WAITER["id"]


def test_each_transition_bumps_version_and_notifies_with_previous_status():
    db = _build_session()
    publisher = RecordingPublisher()
    engine = _build_engine(db, publisher=publisher)
    order_id = _seed_order(db, S.PENDING)

    order = engine.update_status(order_id, S.CONFIRMED, CHEF["email"])

    assert order.version == 2
    assert publisher.updated == [(order_id, S.PENDING, S.CONFIRMED)]


def test_notification_failure_does_not_fail_the_transition():
    db = _build_session()
    order_id = _seed_order(db, S.PENDING)

    order = _build_engine(db, publisher=BrokenPublisher()).update_status(order_id, S.CONFIRMED, CHEF["email"])

    assert order.status == S.CONFIRMED
    assert _status(db, order_id) == S.CONFIRMED


def test_assign_chef_advances_confirmed_exactly_once():
    db = _build_session()
    publisher = RecordingPublisher()
    engine = _build_engine(db, publisher=publisher)
    order_id = _seed_order(db, S.CONFIRMED)

    first = engine.assign_to_chef(order_id, CHEF["id"])
    assert first.status == S.PREPARING
    assert first.assigned_chef_id == CHEF["id"]
    version = first.version

    again = engine.assign_to_chef(order_id, CHEF["id"])
    assert again.status == S.PREPARING
    assert again.version == version
    assert len(publisher.updated) == 1

    swapped = engine.assign_to_chef(order_id, OTHER_CHEF["id"])
    assert swapped.status == S.PREPARING
    assert swapped.assigned_chef_id == OTHER_CHEF["id"]


def test_assign_waiter_advances_preparing_but_never_moves_backward():
    db = _build_session()
    engine = _build_engine(db)
    preparing = _seed_order(db, S.PREPARING)
    served = _seed_order(db, S.SERVED)

    assert engine.assign_to_waiter(preparing, WAITER["id"]).status == S.READY_FOR_SERVICE
    late = engine.assign_to_waiter(served, WAITER["id"])
    assert late.status == S.SERVED
    assert late.assigned_waiter_id == WAITER["id"]


def test_assignment_validates_assignee_and_terminal_orders():
    db = _build_session()
    engine = _build_engine(db)
    confirmed = _seed_order(db, S.CONFIRMED)
    completed = _seed_order(db, S.COMPLETED)

    with pytest.raises(OrderValidationError):
        engine.assign_to_chef(confirmed, CUSTOMER["id"])
    with pytest.raises(OrderValidationError):
        engine.assign_to_waiter(confirmed, "u-nobody")
    with pytest.raises(IllegalTransitionError):
        engine.assign_to_chef(completed, CHEF["id"])

    assert _status(db, confirmed) == S.CONFIRMED


def test_cancelled_order_leaves_the_chef_queue_and_cannot_be_assigned():
    db = _build_session()
    engine = _build_engine(db)
    order = engine.create_order([OrderLine(ESPRESSO["id"], 2)], CUSTOMER["id"])
    engine.update_status(order.id, S.CONFIRMED, CHEF["email"])

    assert [o.id for o in engine.queries.needing_chef()] == [order.id]

    engine.cancel_order(order.id, CUSTOMER["email"])

    assert engine.queries.needing_chef() == []
    with pytest.raises(IllegalTransitionError):
        engine.assign_to_chef(order.id, CHEF["id"])
    assert _stock(db, ESPRESSO["id"]) == 10


def test_lost_version_race_maps_to_concurrent_update_and_rolls_back(monkeypatch):
    db = _build_session()
    engine = _build_engine(db)
    order = engine.create_order([OrderLine(ESPRESSO["id"], 2)], CUSTOMER["id"])

    def _stale_commit():
        raise StaleDataError("UPDATE statement on table 'orders' expected to update 1 row(s); 0 were matched.")

    monkeypatch.setattr(db, "commit", _stale_commit)

    with pytest.raises(ConcurrentUpdateError):
        engine.cancel_order(order.id, CUSTOMER["email"])

    monkeypatch.undo()
    assert _status(db, order.id) == S.PENDING
    assert _stock(db, ESPRESSO["id"]) == 8


def test_version_column_rejects_second_writer_from_same_starting_state(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    seed = SessionLocal()
    _seed(seed)
    order_id = _seed_order(seed, S.PENDING)
    seed.close()

    winner_db = SessionLocal()
    loser_db = SessionLocal()
    stale = loser_db.get(Order, order_id)
    assert stale.version == 1

    _build_engine(winner_db).update_status(order_id, S.CONFIRMED, CHEF["email"])

    stale.apply(status=S.CANCELLED)
    with pytest.raises(StaleDataError):
        loser_db.commit()
    loser_db.rollback()

    assert loser_db.get(Order, order_id, populate_existing=True).status == S.CONFIRMED
    winner_db.close()
    loser_db.close()
    engine.dispose()


def test_concurrent_cancellations_restore_stock_exactly_once(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'cancel.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    seed = SessionLocal()
    _seed(seed)
    order_id = _build_engine(seed).create_order([OrderLine(ESPRESSO["id"], 2)], CUSTOMER["id"]).id
    assert _stock(seed, ESPRESSO["id"]) == 8
    seed.close()

    barrier = threading.Barrier(2)
    outcomes = []
    publishers = []
    lock = threading.Lock()

    def _cancel():
        db = SessionLocal()
        publisher = RecordingPublisher()
        lifecycle = _build_engine(db, publisher)
        load_actionable = lifecycle.queries.load_actionable

        def _load_then_wait(*args, **kwargs):
            order = load_actionable(*args, **kwargs)
            barrier.wait(timeout=10)
            return order

        lifecycle.queries.load_actionable = _load_then_wait
        try:
            lifecycle.cancel_order(order_id, CUSTOMER["email"])
            result = "ok"
        except ConcurrentUpdateError:
            result = "conflict"
        finally:
            db.close()
        with lock:
            outcomes.append(result)
            publishers.append(publisher)

    threads = [threading.Thread(target=_cancel) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    check = SessionLocal()
    final_stock = _stock(check, ESPRESSO["id"])
    cancelled = check.get(Order, order_id)
    final_status = cancelled.status
    check.close()
    engine.dispose()

    assert sorted(outcomes) == ["conflict", "ok"]
    assert final_stock == 10
    assert final_status == S.CANCELLED
    assert sorted(len(p.updated) for p in publishers) == [0, 1]
