"""
行情监控器 - 后台线程定时轮询 USDT/BRL 价格并缓存最新 tick
"""
import threading
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional
from utils.logger import logger
from services.market.api_client import APIClient
from services.market.type import PriceTick, CustomerQuote

PRICE_QUANT = Decimal("0.0001")


class PriceMonitor:
    """价格监控器 - 后台运行，只保留最新一个 tick"""

    def __init__(
        self,
        api_client: APIClient,
        symbol: str = "USDT/BRL",
        markup: Decimal = Decimal("0.01"),
        poll_seconds: int = 5,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.api_client = api_client
        self.symbol = symbol
        self.markup = Decimal(str(markup))
        self.poll_seconds = poll_seconds
        self.clock = clock

        self._latest: Optional[PriceTick] = None
        self.error: Optional[str] = None  # 最近一次轮询的错误

        # 运行状态
        self._running = False
        self._stop_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

        # 线程安全锁
        self._cache_lock = threading.Lock()

        logger.info(f"PriceMonitor 初始化完成 ({symbol}, 加价 {self.markup * 100}%)")

    def start(self):
        """启动后台轮询"""
        if self._running:
            logger.warning("PriceMonitor 已在运行")
            return

        self._running = True
        self._stop_event.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="PriceMonitor"
        )
        self._poll_thread.start()
        logger.info("✅ PriceMonitor 已启动")

    def stop(self):
        """停止后台轮询"""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._poll_thread:
            self._poll_thread.join(timeout=10)
            self._poll_thread = None

        logger.info("✅ PriceMonitor 已停止")

    @property
    def is_running(self) -> bool:
        return self._running

    def _poll_loop(self):
        while self._running and not self._stop_event.is_set():
            self.refresh()
            self._stop_event.wait(timeout=self.poll_seconds)

    def client_price(self, base_price: Decimal, markup: Optional[Decimal] = None) -> Decimal:
        """客户价格 = 基础价格 × (1 + 加价)，markup 为空时使用标准加价"""
        markup = self.markup if markup is None else Decimal(str(markup))
        return (base_price * (Decimal("1") + markup)).quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)

    def quote_for(self, markup_percent: Optional[Decimal] = None) -> Optional[CustomerQuote]:
        """基于最新 tick 生成客户报价

        markup_percent 为客户专属加价（百分数，0.4 表示 0.4%）；
        为空时按标准加价报价，savings 为 0。尚无 tick 时返回 None
        """
        tick = self.get_latest_tick()
        if tick is None:
            return None

        if markup_percent is None:
            markup = self.markup
        else:
            markup = Decimal(str(markup_percent)) / Decimal("100")
            if markup < 0:
                raise ValueError(f"加价不能为负: {markup_percent}")

        standard = tick.client_price
        client = self.client_price(tick.base_price, markup)
        is_custom = markup_percent is not None
        savings = (standard - client) if is_custom else Decimal("0")
        savings_percent = (savings / standard * Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return CustomerQuote(
            base_price=tick.base_price,
            client_price=client,
            standard_price=standard,
            markup=markup,
            savings=savings,
            savings_percent=savings_percent,
            observed_at=tick.observed_at,
            is_custom=is_custom,
        )

    def refresh(self) -> Optional[PriceTick]:
        """执行一次轮询；失败时保留上一个 tick 并设置错误标记"""
        try:
            ticker = self.api_client.fetch_ticker(self.symbol)
        except Exception as e:
            with self._cache_lock:
                self.error = str(e) or e.__class__.__name__
                latest = self._latest
            if latest:
                logger.warning(f"⚠️ 获取 {self.symbol} 价格失败，继续使用缓存价格 {latest.client_price}: {e}")
            else:
                logger.error(f"❌ 获取 {self.symbol} 价格失败，暂无可用价格: {e}", exc_info=True)
            return latest

        base_price = ticker['last']
        tick = PriceTick(
            base_price=base_price,
            client_price=self.client_price(base_price),
            observed_at=self.clock(),
            daily_change_percent=ticker.get('change_percent'),
            volume=ticker.get('volume'),
            high_24h=ticker.get('high'),
            low_24h=ticker.get('low'),
        )
        with self._cache_lock:
            self._latest = tick
            self.error = None
        logger.debug(f"📊 价格更新: {self.symbol} {base_price} -> {tick.client_price}")
        return tick

    def get_latest_tick(self) -> Optional[PriceTick]:
        """获取最新 tick（线程安全），尚未成功轮询时为 None"""
        with self._cache_lock:
            return self._latest

    @property
    def is_stale(self) -> bool:
        """最近一次轮询失败但仍有旧价格（界面显示“缓存”标记）"""
        with self._cache_lock:
            return self.error is not None and self._latest is not None
