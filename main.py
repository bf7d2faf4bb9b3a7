# main.py
import time
import signal
import sys
from dataclasses import dataclass
from typing import Optional
from config.settings import Settings
from services.identity import DatabaseIdentity
from services.market.api_client import APIClient
from services.market.monitor import PriceMonitor
from services.notifier import NotificationInterface, WebhookNotifier
from services.order.lifecycle import OrderService
from services.order.receipts import ReceiptPipeline
from services.order.tx_hash import HashResolver
from services.order.watcher import ExpirySweeper
from services.pricing.price_lock import PriceLockManager
from services.storage import LocalStorage
from utils.logger import logger

STATUS_INTERVAL = 60  # 状态输出间隔（秒）


@dataclass
class Services:
    identity: DatabaseIdentity
    notifier: Optional[NotificationInterface]
    order_service: OrderService
    price_monitor: PriceMonitor
    price_locks: PriceLockManager
    storage: LocalStorage
    receipts: ReceiptPipeline
    hash_resolver: HashResolver
    sweeper: ExpirySweeper


def build_services(settings: Settings, api_client: Optional[APIClient] = None) -> Services:
    """按配置组装所有服务"""
    identity = DatabaseIdentity(settings)
    notifier = WebhookNotifier(settings.notify_webhook_url) if settings.notify_webhook_url else None
    order_service = OrderService(settings, identity, notifier=notifier)
    storage = LocalStorage(
        settings.storage_root,
        secret=settings.signed_url_secret,
        base_url=f"{settings.app_base_url.rstrip('/')}/storage/",
    )
    return Services(
        identity=identity,
        notifier=notifier,
        order_service=order_service,
        price_monitor=PriceMonitor(
            api_client or APIClient(),
            symbol=settings.price_symbol,
            markup=settings.price_markup,
            poll_seconds=settings.price_poll_seconds,
        ),
        price_locks=PriceLockManager(settings.trading_lock_seconds),
        storage=storage,
        receipts=ReceiptPipeline(settings, order_service, storage, notifier=notifier),
        hash_resolver=HashResolver(order_service, notifier, app_base_url=settings.app_base_url),
        sweeper=ExpirySweeper(order_service, interval_seconds=settings.sweep_interval_seconds),
    )


def main():
    settings = Settings()
    settings.create_tables()
    services = build_services(settings)
    price_monitor = services.price_monitor
    sweeper = services.sweeper

    print("=" * 60)
    print("🚀 启动行情轮询与订单过期扫描...")
    print("=" * 60)

    price_monitor.start()
    sweeper.start()

    # 设置信号处理，优雅退出
    def signal_handler(sig, frame):
        print(f"\n\n{'=' * 60}")
        print("🛑 收到停止信号，正在停止...")
        print(f"{'=' * 60}")
        sweeper.stop()
        price_monitor.stop()
        services.price_locks.unlock()
        print("👋 程序退出")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)  # Ctrl+C
    signal.signal(signal.SIGTERM, signal_handler)  # kill命令

    print("💡 按 Ctrl+C 停止并退出\n")

    last_status_time = time.time()
    try:
        while True:
            time.sleep(1)

            current_time = time.time()
            if current_time - last_status_time >= STATUS_INTERVAL:
                tick = price_monitor.get_latest_tick()
                if tick:
                    cached = " (缓存)" if price_monitor.is_stale else ""
                    logger.info(
                        f"📊 {settings.price_symbol}: 基础 {tick.base_price} | 客户 {tick.client_price}{cached}"
                    )
                else:
                    logger.warning(f"⚠️ 暂无 {settings.price_symbol} 报价: {price_monitor.error}")
                last_status_time = current_time

    except KeyboardInterrupt:
        signal_handler(None, None)

if __name__ == "__main__":
    main()
