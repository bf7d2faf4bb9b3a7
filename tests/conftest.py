"""
Pytest 配置和共享 fixtures
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from config.settings import Settings
from models.user import User, Profile
from services.identity import DatabaseIdentity
from services.notifier import NotificationInterface
from services.order.lifecycle import OrderService
from services.order.realtime import ChangeFeed
from services.pricing.price_lock import PriceLock
from services.storage import LocalStorage

T0 = datetime(2025, 3, 10, 14, 0, 0)

TRON_WALLET = "TQn9Y2khEsLJW1ChVWFMSMeRDow5KcbLSE"
EVM_WALLET = "0x" + "ab" * 20


class FakeClock:
    """可控时钟"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class FakeNotifier(NotificationInterface):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, template, to, data):
        if self.fail:
            raise ConnectionError("smtp indisponível")
        self.sent.append((template, to, data))


@pytest.fixture(scope="function")
def settings(tmp_path):
    """每个测试独立的内存数据库"""
    settings = Settings("sqlite://")
    settings.storage_root = str(tmp_path / "storage")
    settings.operator_email = "mesa@otc.example"
    settings.create_tables()
    return settings


@pytest.fixture
def db_session(settings):
    """为每个测试函数提供数据库会话"""
    with settings.get_session() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def customer(settings):
    with settings.get_session() as session:
        user = User(email="cliente@example.com", password_hash="x")
        session.add(user)
        session.flush()
        session.add(Profile(id=user.id, full_name="Maria Souza", email="maria@example.com",
                            document_number="123.456.789-00"))
    return user


@pytest.fixture
def identity(settings, customer):
    identity = DatabaseIdentity(settings)
    identity.sign_in(customer.id)
    return identity


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def order_service(settings, identity, notifier, feed, clock):
    return OrderService(settings, identity, notifier=notifier, feed=feed, clock=clock)


@pytest.fixture
def storage(settings):
    return LocalStorage(settings.storage_root, secret=settings.signed_url_secret)


@pytest.fixture
def make_lock(clock):
    def _make(price="5.20", amount=None, duration=120):
        return PriceLock(
            locked_price=Decimal(price),
            locked_at=clock(),
            duration_seconds=duration,
            amount=Decimal(str(amount)) if amount is not None else None,
        )
    return _make


@pytest.fixture
def pending_order(order_service, make_lock):
    return order_service.create_order(make_lock(), "100", "TRC20", TRON_WALLET)


@pytest.fixture
def mock_ccxt_exchange():
    """Mock CCXT exchange（USDT/BRL ticker）"""
    mock_exchange = MagicMock()
    mock_exchange.fetch_ticker.return_value = {
        'symbol': 'USDT/BRL',
        'last': 5.40,
        'close': 5.40,
        'percentage': 0.35,
        'baseVolume': 1250000.0,
        'high': 5.45,
        'low': 5.36,
    }
    return mock_exchange
