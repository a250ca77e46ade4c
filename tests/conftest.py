import dataclasses
import os
from decimal import Decimal
from types import SimpleNamespace

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SMS_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret"

import pytest
from sqlalchemy.orm import sessionmaker

from storefront.cache import MemoryCache
from storefront.config import get_settings
from storefront.database import init_db, make_engine
from storefront.events import InlineEventQueue, RecordingEventQueue
from storefront.models import Category, Customer, Product, ProductVariant
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.notifications.handlers import make_order_event_handler
from storefront.notifications.providers import SendResult, SmsProvider
from storefront.orders import CustomerInfo


class FakeProvider(SmsProvider):
    """Records every send; fails the first ``fail_times`` calls."""

    def __init__(self, name="fake", fail_times=0, configured=True):
        super().__init__(timeout=1)
        self.name = name
        self.fail_times = fail_times
        self.configured = configured
        self.sent = []

    def is_configured(self):
        return self.configured

    def send(self, phone, message):
        self.sent.append((phone, message))
        if len(self.sent) <= self.fail_times:
            return SendResult(sent=False, provider=self.name, error=f"{self.name} down")
        return SendResult(sent=True, provider=self.name, message_id=f"{self.name}-{len(self.sent)}")


@pytest.fixture()
def engine(tmp_path):
    # file-backed so that concurrent sessions see one database
    eng = make_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def catalog(db):
    tools = Category(name="Tools", description="Hand and power tools")
    building = Category(name="Building Materials")
    db.add_all([tools, building])
    db.flush()

    hammer = Product(category_id=tools.id, name="Claw Hammer", price=Decimal("250.00"), stock_quantity=10)
    nails = Product(category_id=building.id, name="Common Nails", unit="kg", price=Decimal("1.50"), stock_quantity=1000)
    cement = Product(category_id=building.id, name="Portland Cement", unit="bag", price=Decimal("245.50"), stock_quantity=1)
    drill = Product(category_id=tools.id, name="Cordless Drill", price=Decimal("2000.00"), stock_quantity=0)
    retired = Product(
        category_id=tools.id,
        name="Old Saw",
        price=Decimal("100.00"),
        stock_quantity=5,
        is_deleted=True,
        is_available=False,
    )
    hidden = Product(category_id=tools.id, name="Hidden Wrench", price=Decimal("80.00"), stock_quantity=5, is_available=False)
    db.add_all([hammer, nails, cement, drill, retired, hidden])
    db.flush()

    drill_18v = ProductVariant(product_id=drill.id, name="18V", price=Decimal("2500.00"), stock_quantity=3)
    drill_12v = ProductVariant(product_id=drill.id, name="12V", price=Decimal("1800.00"), stock_quantity=0)
    drill_old = ProductVariant(
        product_id=drill.id,
        name="9V",
        price=Decimal("900.00"),
        stock_quantity=4,
        is_deleted=True,
        is_available=False,
    )
    db.add_all([drill_18v, drill_12v, drill_old])

    customer = Customer(name="Juan Dela Cruz", phone="09171234567", email="juan@example.com")
    db.add(customer)
    db.commit()

    return SimpleNamespace(
        tools=tools.id,
        building=building.id,
        hammer=hammer.id,
        nails=nails.id,
        cement=cement.id,
        drill=drill.id,
        retired=retired.id,
        hidden=hidden.id,
        drill_18v=drill_18v.id,
        drill_12v=drill_12v.id,
        drill_old=drill_old.id,
        customer=customer.id,
    )


@pytest.fixture()
def cache():
    return MemoryCache(default_ttl=300)


@pytest.fixture()
def settings():
    return dataclasses.replace(
        get_settings(),
        store_name="Test Hardware",
        store_phone="09170000000",
        admin_phone="",
        sms_enabled=False,
        sms_test_mode=False,
        sms_max_retries=2,
        sms_retry_backoff_seconds=2.0,
    )


@pytest.fixture()
def fake_provider():
    return FakeProvider()


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def dispatcher(session_factory, settings, fake_provider, sleeps):
    return NotificationDispatcher(session_factory, settings, providers=[fake_provider], sleep=sleeps.append)


@pytest.fixture()
def events():
    return RecordingEventQueue()


@pytest.fixture()
def inline_events(dispatcher):
    return InlineEventQueue(make_order_event_handler(dispatcher))


@pytest.fixture()
def customer_info():
    return CustomerInfo(
        customer_name="Maria Santos",
        phone="+63 917 123 4567",
        address="123 Rizal Street, Purok 4",
        barangay="San Isidro",
        landmarks="Near the chapel",
    )


@pytest.fixture()
def stock(session_factory):
    """Read current stock with a fresh session."""

    def _read(model, row_id):
        with session_factory() as s:
            return s.get(model, row_id).stock_quantity

    return _read
