"""
交易哈希解析与订单完成测试
"""
import pytest
from models.order import OrderStatus
from models.order_receipt import OrderReceipt
from models.order_timeline import EventType
from models.user import Profile
from services.order.errors import PreconditionError, ValidationError
from services.order.tx_hash import (
    HashResolver, extract_hash, validate_hash, validate_hash_for_network, explorer_link,
)
from tests.conftest import EVM_WALLET, FakeNotifier

TRON_TX = "a" * 64
EVM_TX = "0x" + "b" * 64


@pytest.fixture
def processing_order(order_service, make_lock, settings, clock):
    order = order_service.create_order(make_lock(), "250", "ERC20", EVM_WALLET)
    with settings.get_session() as session:
        session.add(OrderReceipt(order_id=order.id, file_url="x/pix.pdf", file_name="pix.pdf",
                                 uploaded_by=order.user_id))
    clock.advance(10)
    order_service.mark_paid(order.id)
    clock.advance(10)
    order_service.confirm_payment(order.id, admin_id="admin-1")
    clock.advance(10)
    return order_service.get_order(order.id)


class TestHashParsing:

    @pytest.mark.parametrize("value", [TRON_TX, "F" * 64, EVM_TX, "0x" + "0123456789abcdef" * 4])
    def test_valid_hashes(self, value):
        """测试有效哈希"""
        assert validate_hash(value)

    @pytest.mark.parametrize("value", [
        "", "a" * 63, "a" * 65, "0x" + "b" * 63, "g" * 64, "0X" + "b" * 64,
        "a" * 64 + "\n", EVM_TX + "\n",
    ])
    def test_invalid_hashes(self, value):
        """测试无效哈希"""
        assert not validate_hash(value)

    def test_network_aware_validation(self):
        """测试按网络校验哈希格式"""
        assert validate_hash_for_network(TRON_TX, "TRC20")
        assert not validate_hash_for_network(EVM_TX, "TRC20")
        assert validate_hash_for_network(EVM_TX, "BEP20")
        assert not validate_hash_for_network(TRON_TX, "ERC20")

    def test_extract_from_tronscan_url(self):
        """测试从 Tronscan 链接提取哈希"""
        url = f"https://tronscan.org/#/transaction/{TRON_TX}"
        assert extract_hash(url) == TRON_TX

    def test_extract_from_etherscan_url(self):
        """测试从 Etherscan 链接提取哈希"""
        assert extract_hash(f"https://etherscan.io/tx/{EVM_TX}?utm=x") == EVM_TX

    def test_overlong_hash_in_url_is_not_truncated(self):
        """测试链接中过长的哈希不会被截断"""
        url = f"https://etherscan.io/tx/{EVM_TX}c"
        assert extract_hash(url) == url
        assert not validate_hash(extract_hash(url))

    def test_extract_trims_plain_hash(self):
        """测试去除哈希两端空白"""
        assert extract_hash(f"  {EVM_TX}\n") == EVM_TX

    def test_explorer_links(self):
        """测试区块浏览器链接"""
        assert explorer_link(TRON_TX, "TRC20") == f"https://tronscan.org/#/transaction/{TRON_TX}"
        assert explorer_link(EVM_TX, "BEP20") == f"https://bscscan.com/tx/{EVM_TX}"
        assert explorer_link(EVM_TX, "POLYGON") == f"https://polygonscan.com/tx/{EVM_TX}"
        assert explorer_link(EVM_TX, "SOLANA") == "#"


class TestSendHash:

    def test_completes_processing_order(self, order_service, processing_order, notifier):
        """测试发送哈希完成订单并通知客户"""
        resolver = HashResolver(order_service, notifier, app_base_url="https://otc.example/")

        result = resolver.send_hash(processing_order.id, EVM_TX, admin_id="admin-1")

        assert result.applied is True
        assert result.order.status == OrderStatus.COMPLETED.value
        assert result.order.transaction_hash == EVM_TX
        assert "etherscan.io/tx/0x" in result.explorer_link

        sent_events = [e for e in order_service.get_timeline(processing_order.id)
                       if e.event_type == EventType.USDT_SENT.value]
        assert len(sent_events) == 1
        assert sent_events[0].event_metadata["transaction_hash"] == EVM_TX

        template, to, data = notifier.sent[-1]
        assert template == "usdt-sent"
        assert to == "maria@example.com"
        assert data["link_ordem"] == f"https://otc.example/order/{processing_order.id}"
        assert result.notified is True and result.warning is None

    def test_accepts_explorer_url(self, order_service, processing_order):
        """测试接受浏览器链接输入"""
        resolver = HashResolver(order_service)
        result = resolver.send_hash(processing_order.id, f"https://etherscan.io/tx/{EVM_TX}", admin_id="admin-1")
        assert result.order.transaction_hash == EVM_TX

    def test_invalid_hash_changes_nothing(self, order_service, processing_order):
        """测试无效哈希不改变订单"""
        resolver = HashResolver(order_service)

        with pytest.raises(ValidationError):
            resolver.send_hash(processing_order.id, "abc", admin_id="admin-1")
        with pytest.raises(ValidationError):
            resolver.send_hash(processing_order.id, TRON_TX, admin_id="admin-1")
        with pytest.raises(ValidationError):
            resolver.send_hash(processing_order.id, f"https://etherscan.io/tx/{EVM_TX}c", admin_id="admin-1")

        assert order_service.get_order(processing_order.id).status == OrderStatus.PROCESSING.value

    def test_requires_processing_status(self, order_service, pending_order):
        """测试只有 processing 订单可以完成"""
        with pytest.raises(PreconditionError):
            HashResolver(order_service).send_hash(pending_order.id, TRON_TX, admin_id="admin-1")

    def test_notification_failure_returns_warning(self, order_service, processing_order):
        """测试通知失败返回警告"""
        resolver = HashResolver(order_service, FakeNotifier(fail=True))

        result = resolver.send_hash(processing_order.id, EVM_TX, admin_id="admin-1")

        assert result.order.status == OrderStatus.COMPLETED.value
        assert result.notified is False
        assert result.warning

    def test_falls_back_to_auth_email(self, order_service, processing_order, notifier, identity, settings):
        """测试资料无邮箱时使用登录邮箱并回填"""
        with settings.get_session() as session:
            profile = session.get(Profile, processing_order.user_id)
            profile.email = None
            session.add(profile)

        result = HashResolver(order_service, notifier).send_hash(processing_order.id, EVM_TX, admin_id="admin-1")

        assert result.notified is True
        assert notifier.sent[-1][1] == "cliente@example.com"
        assert identity.get_profile(processing_order.user_id).email == "cliente@example.com"


class TestHashView:

    def test_record_hash_view(self, order_service, processing_order, clock):
        """测试记录客户查看哈希"""
        HashResolver(order_service).send_hash(processing_order.id, EVM_TX, admin_id="admin-1")
        clock.advance(5)

        order_service.record_hash_view(processing_order.id)
        order = order_service.record_hash_view(processing_order.id)

        assert order.hash_viewed_count == 2
        assert order.hash_viewed_at == clock()
        assert order.status == OrderStatus.COMPLETED.value
        events = [e.event_type for e in order_service.get_timeline(processing_order.id)]
        assert events.count(EventType.HASH_VIEWED.value) == 2

    def test_hash_view_requires_completed(self, order_service, processing_order):
        """测试未完成订单不能查看哈希"""
        with pytest.raises(PreconditionError):
            order_service.record_hash_view(processing_order.id)
