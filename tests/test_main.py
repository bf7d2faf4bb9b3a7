"""
服务组装测试
"""
import os
from decimal import Decimal
from main import build_services
from services.market.api_client import APIClient


def test_build_services_uses_settings(settings, mock_ccxt_exchange):
    """测试各服务使用配置中的参数"""
    settings.trading_lock_seconds = 90
    settings.signed_url_ttl = 600
    settings.app_base_url = "https://otc.example/"
    settings.sweep_interval_seconds = 15
    settings.notify_webhook_url = ""

    services = build_services(settings, api_client=APIClient(mock_ccxt_exchange))

    assert services.price_locks.duration_seconds == 90
    assert services.storage.root == os.path.abspath(settings.storage_root)
    assert services.storage.base_url == "https://otc.example/storage/"
    assert services.receipts.link_ttl == 600
    assert services.receipts.storage is services.storage
    assert services.hash_resolver.app_base_url == "https://otc.example"
    assert services.sweeper.interval_seconds == 15
    assert services.price_monitor.markup == Decimal("0.01")
    assert services.notifier is None


def test_signed_links_use_configured_secret(settings, mock_ccxt_exchange):
    """测试凭证链接由配置的密钥签名"""
    settings.signed_url_secret = "segredo"
    services = build_services(settings, api_client=APIClient(mock_ccxt_exchange))
    services.storage.upload(settings.receipt_bucket, "u/o/pix.pdf", b"pdf")

    url = services.storage.create_signed_url(settings.receipt_bucket, "u/o/pix.pdf", settings.signed_url_ttl)

    assert services.storage.verify_signed_url(url)
