"""
秒级倒计时任务：每秒重新计算剩余时间，归零时回调一次
"""
import threading
from typing import Callable, Optional
from utils.logger import logger


class Countdown:
    """可调度的倒计时，stop() 为显式的停止句柄"""

    def __init__(
        self,
        remaining_fn: Callable[[], int],
        on_expire: Callable[[], None],
        on_tick: Optional[Callable[[int], None]] = None,
        interval: float = 1.0,
        name: str = "Countdown",
    ):
        self.remaining_fn = remaining_fn
        self.on_expire = on_expire
        self.on_tick = on_tick
        self.interval = interval
        self.name = name

        self.is_running = False
        self.fired = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self.is_running:
            logger.warning(f"{self.name} 已在运行")
            return
        self.is_running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()

    def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None

    def tick(self) -> bool:
        """执行一次检查，返回倒计时是否已结束"""
        if self.fired:
            return True
        remaining = self.remaining_fn()
        if self.on_tick:
            self.on_tick(remaining)
        if remaining > 0:
            return False
        # 只触发一次
        self.fired = True
        self.on_expire()
        return True

    def _run(self):
        while self.is_running and not self._stop_event.is_set():
            try:
                if self.tick():
                    break
            except Exception as e:
                logger.error(f"❌ {self.name} 倒计时回调出错: {e}", exc_info=True)
                break
            self._stop_event.wait(timeout=self.interval)
        self.is_running = False
