"""
订单过期处理
ExpiryWatcher: 订单页面打开期间的单订单倒计时（页面关闭即停止）
ExpirySweeper: 服务端定时扫描，补上页面已关闭的订单
"""
import threading
from datetime import timedelta
from typing import List, Optional
from sqlmodel import select
from models.order import Order, OrderStatus
from services.order.lifecycle import OrderService
from services.pricing.price_lock import remaining_seconds
from utils.countdown import Countdown
from utils.logger import logger


class ExpiryWatcher:
    """单订单过期倒计时，基于数据库中的 locked_at 每秒重算"""

    def __init__(self, order_service: OrderService, order_id: str, interval: float = 1.0):
        self.order_service = order_service
        self.order_id = order_id
        self.expired = False
        order = order_service.get_order(order_id)
        self.locked_at = order.locked_at
        self.initial_status = order.status
        self._countdown = Countdown(
            remaining_fn=self.remaining_seconds,
            on_expire=self._on_expire,
            interval=interval,
            name=f"ExpiryWatcher-{order_id[:8]}",
        )

    def remaining_seconds(self) -> int:
        return remaining_seconds(
            self.locked_at,
            self.order_service.payment_window_seconds,
            self.order_service.clock(),
        )

    def _on_expire(self):
        # 只尝试一次；状态已变化时什么都不做
        try:
            self.expired = self.order_service.expire_if_due(self.order_id)
        except Exception as e:
            logger.error(f"❌ 订单 {self.order_id} 过期处理失败: {e}", exc_info=True)
            return
        if self.expired:
            logger.info(f"⏰ 订单 {self.order_id} 已过期")
        else:
            logger.info(f"订单 {self.order_id} 倒计时结束，但状态已变化，不做处理")

    def start(self):
        if self.initial_status != OrderStatus.PENDING.value:
            logger.info(f"订单 {self.order_id} 状态为 {self.initial_status}，无需倒计时")
            return
        self._countdown.start()

    def stop(self):
        self._countdown.stop()

    def tick(self) -> bool:
        """执行一次检查，返回倒计时是否结束"""
        return self._countdown.tick()

    @property
    def is_running(self) -> bool:
        return self._countdown.is_running


class ExpirySweeper:
    """定时扫描所有超时未付款的 pending 订单"""

    def __init__(self, order_service: OrderService, interval_seconds: int = 60):
        self.order_service = order_service
        self.interval_seconds = interval_seconds
        self.is_running = False
        self._stop_event = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None

    def start(self):
        if self.is_running:
            logger.warning("ExpirySweeper 已在运行")
            return
        self.is_running = True
        self._stop_event.clear()
        self._sweep_thread = threading.Thread(
            target=self._sweep_loop,
            daemon=True,
            name="ExpirySweeper"
        )
        self._sweep_thread.start()
        logger.info("✅ ExpirySweeper 已启动")

    def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        self._stop_event.set()
        if self._sweep_thread:
            self._sweep_thread.join(timeout=10)
            self._sweep_thread = None
        logger.info("✅ ExpirySweeper 已停止")

    def _sweep_loop(self):
        while self.is_running and not self._stop_event.is_set():
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"❌ 过期扫描出错: {e}", exc_info=True)
            self._stop_event.wait(timeout=self.interval_seconds)

    def find_due(self) -> List[str]:
        cutoff = self.order_service.clock() - timedelta(seconds=self.order_service.payment_window_seconds)
        with self.order_service.settings.get_session() as session:
            return list(session.exec(
                select(Order.id)
                .where(Order.status == OrderStatus.PENDING.value)
                .where(Order.payment_confirmed_at.is_(None))
                .where(Order.locked_at <= cutoff)
            ).all())

    def sweep_once(self) -> int:
        """扫描一次，返回本次过期的订单数"""
        expired = 0
        for order_id in self.find_due():
            if self.order_service.expire_if_due(order_id):
                expired += 1
        if expired:
            logger.info(f"⏰ 本次扫描过期 {expired} 个订单")
        return expired
