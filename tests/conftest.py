import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytz
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.database import Base
from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from app.models.order import Order, OrderStatus
from app.models.subscription import RedemptionMode, Subscription, SubscriptionPlan
from app.unit_of_work import UnitOfWork
from app.utils.timezone import FixedClock

# 11:30 in India, so the business date is 2026-03-10
NOW = datetime(2026, 3, 10, 6, 0, tzinfo=pytz.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs to leave transaction control to SQLAlchemy for SAVEPOINT to work
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory)


@pytest.fixture
def clock():
    return FixedClock(NOW)


class Factory:
    """Seeds rows in short-lived sessions and reads them back fresh"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _persist(self, obj):
        with self.session_factory() as db:
            db.add(obj)
            db.commit()
        return obj

    def get(self, model, id_):
        with self.session_factory() as db:
            return db.get(model, id_)

    def query(self, fn):
        with self.session_factory() as db:
            return fn(db)

    def plan(self, **kwargs) -> SubscriptionPlan:
        defaults = dict(
            name="Monthly 4 Pickups",
            price_paise=99900,
            validity_days=30,
            max_pickups=4,
            kg_limit=Decimal("50"),
            items_limit=None,
            redemption_mode=RedemptionMode.MULTI_USE,
            active=True,
        )
        defaults.update(kwargs)
        return self._persist(SubscriptionPlan(id=uuid.uuid4(), **defaults))

    def subscription(self, plan: SubscriptionPlan, user_id=None, **kwargs) -> Subscription:
        defaults = dict(
            user_id=user_id or uuid.uuid4(),
            plan_id=plan.id,
            validity_start_date=NOW - timedelta(days=1),
            expiry_date=NOW + timedelta(days=29),
            active=True,
            remaining_pickups=plan.max_pickups,
            used_kg=Decimal("0"),
            used_items_count=0,
            total_max_pickups=plan.max_pickups,
            total_kg_limit=plan.kg_limit,
            total_items_limit=plan.items_limit,
        )
        defaults.update(kwargs)
        return self._persist(Subscription(id=uuid.uuid4(), **defaults))

    def order(self, user_id=None, **kwargs) -> Order:
        defaults = dict(
            order_number=f"ORD-{uuid.uuid4().hex[:8]}",
            user_id=user_id or uuid.uuid4(),
            status=OrderStatus.PICKED_UP,
            order_source="ONLINE",
        )
        defaults.update(kwargs)
        return self._persist(Order(id=uuid.uuid4(), **defaults))

    def set_order_status(self, order_id, status: str) -> None:
        with self.session_factory() as db:
            db.get(Order, order_id).status = status
            db.commit()

    def invoice(self, **kwargs) -> Invoice:
        defaults = dict(status=InvoiceStatus.DRAFT, subtotal=0, tax=0, discount=0, total=0)
        defaults.update(kwargs)
        return self._persist(Invoice(id=uuid.uuid4(), **defaults))

    def items_for(self, invoice_id):
        return self.query(
            lambda db: list(db.query(InvoiceItem).filter_by(invoice_id=invoice_id).order_by(InvoiceItem.position))
        )


@pytest.fixture
def factory(session_factory):
    return Factory(session_factory)
