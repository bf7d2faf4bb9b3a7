"""
锁价管理器
锁定一个客户价格快照，并在固定时长后失效（不可恢复，只能重新锁价）
"""
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union
from services.market.type import PriceTick, CustomerQuote
from services.order.errors import PreconditionError
from utils.countdown import Countdown
from utils.logger import logger


@dataclass(frozen=True)
class PriceLock:
    locked_price: Decimal
    locked_at: datetime
    duration_seconds: int
    amount: Optional[Decimal] = None  # 锁价时的 USDT 数量


def remaining_seconds(locked_at: datetime, duration_seconds: int, now: datetime) -> int:
    """max(0, duration - 已过秒数)，不会超过 duration"""
    elapsed = math.floor((now - locked_at).total_seconds())
    return max(0, min(duration_seconds, duration_seconds - elapsed))


class PriceLockManager:
    def __init__(self, duration_seconds: int = 120, clock: Callable[[], datetime] = datetime.now):
        self.duration_seconds = duration_seconds
        self.clock = clock
        self.current: Optional[PriceLock] = None
        self._countdown: Optional[Countdown] = None

    def lock(self, tick: Optional[Union[PriceTick, CustomerQuote]], amount: Optional[Decimal] = None) -> PriceLock:
        """锁定 tick（或客户专属报价）的客户价格"""
        if tick is None or tick.client_price is None or tick.client_price <= 0:
            raise PreconditionError("暂无有效报价，无法锁价")

        self.unlock()
        lock = PriceLock(
            locked_price=tick.client_price,
            locked_at=self.clock(),
            duration_seconds=self.duration_seconds,
            amount=Decimal(str(amount)) if amount is not None else None,
        )
        self.current = lock
        logger.info(f"🔒 锁价 {lock.locked_price} ({self.duration_seconds}s)")
        return lock

    def remaining_seconds(self, lock: PriceLock) -> int:
        return remaining_seconds(lock.locked_at, lock.duration_seconds, self.clock())

    def is_expired(self, lock: PriceLock) -> bool:
        return self.remaining_seconds(lock) == 0

    def require_active(self, lock: Optional[PriceLock]) -> PriceLock:
        """下单前校验锁价仍有效"""
        if lock is None:
            raise PreconditionError("请先锁定价格")
        if self.is_expired(lock):
            if self.current is lock:
                self.current = None
            raise PreconditionError("锁定价格已过期，请重新锁价")
        return lock

    def invalidate_on_amount_change(self, new_amount: Decimal) -> bool:
        """数量变化时释放当前锁价，返回是否释放"""
        lock = self.current
        if lock is None or lock.amount is None:
            return False
        if Decimal(str(new_amount)) == lock.amount:
            return False
        logger.info(f"🔓 数量从 {lock.amount} 变为 {new_amount}，释放锁价")
        self.unlock()
        return True

    def start_countdown(
        self,
        on_expire: Callable[[], None],
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> Countdown:
        """为当前锁价启动 1Hz 倒计时，界面关闭时调用 unlock()/stop()"""
        lock = self.current
        if lock is None:
            raise PreconditionError("没有可倒计时的锁价")
        self._stop_countdown()

        def _expired():
            if self.current is lock:
                self.current = None
            on_expire()

        self._countdown = Countdown(
            remaining_fn=lambda: self.remaining_seconds(lock),
            on_expire=_expired,
            on_tick=on_tick,
            name="PriceLockCountdown",
        )
        self._countdown.start()
        return self._countdown

    def unlock(self):
        """手动解锁"""
        self._stop_countdown()
        self.current = None

    def _stop_countdown(self):
        if self._countdown:
            self._countdown.stop()
            self._countdown = None
