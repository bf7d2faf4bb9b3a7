"""
实时变更通道
服务端提交后发布变更事件，订单页面按 order_id 订阅并幂等合并到本地视图
"""
import queue
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Tuple
from utils.logger import logger

ORDERS = "orders"
ORDER_RECEIPTS = "order_receipts"
ORDER_TIMELINE = "order_timeline"


@dataclass(frozen=True)
class ChangeEvent:
    table: str      # orders / order_receipts / order_timeline
    op: str         # INSERT / UPDATE
    order_id: str
    record: Dict[str, Any]

    @property
    def key(self) -> Tuple[str, str]:
        return self.table, str(self.record.get("id"))


class Subscription:
    """单个订阅，可迭代；close() 后停止接收"""

    _CLOSED = object()

    def __init__(self, feed: "ChangeFeed", order_id: str):
        self.feed = feed
        self.order_id = order_id
        self._queue: "queue.Queue" = queue.Queue()
        self.closed = False

    def put(self, event: ChangeEvent):
        if not self.closed:
            self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """取下一个事件，超时或已关闭返回 None"""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return None if item is self._CLOSED else item

    def drain(self) -> List[ChangeEvent]:
        """取出当前所有待处理事件（不阻塞）"""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is not self._CLOSED:
                events.append(item)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.feed._unsubscribe(self)
        self._queue.put(self._CLOSED)

    def __iter__(self) -> Iterator[ChangeEvent]:
        while not self.closed:
            item = self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class ChangeFeed:
    """进程内的发布/订阅通道"""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, order_id: str) -> Subscription:
        subscription = Subscription(self, order_id)
        with self._lock:
            self._subscribers.setdefault(order_id, []).append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription):
        with self._lock:
            subs = self._subscribers.get(subscription.order_id, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscribers.pop(subscription.order_id, None)

    def publish(self, event: ChangeEvent):
        with self._lock:
            subs = list(self._subscribers.get(event.order_id, []))
        for subscription in subs:
            subscription.put(event)
        logger.debug(f"📡 {event.table} {event.op} -> {len(subs)} 个订阅")


@dataclass(frozen=True)
class OrderView:
    """订单页面的本地状态快照"""
    order: Optional[Dict[str, Any]] = None
    receipts: Tuple[Dict[str, Any], ...] = ()
    timeline: Tuple[Dict[str, Any], ...] = ()
    seen: frozenset = field(default_factory=frozenset)

    def sorted_timeline(self) -> List[Dict[str, Any]]:
        return sorted(self.timeline, key=lambda e: e["created_at"])

    @property
    def receipt_count(self) -> int:
        return len(self.receipts)


def merge(view: OrderView, event: ChangeEvent) -> OrderView:
    """把变更事件合并到视图（纯函数，重复事件不产生变化）"""
    if event.table == ORDERS:
        current = view.order
        if current is not None:
            if current == event.record:
                return view
            # 乱序到达的旧快照不能覆盖新快照
            if current.get("updated_at") and event.record.get("updated_at") \
                    and event.record["updated_at"] < current["updated_at"]:
                return view
        return replace(view, order=dict(event.record))

    if event.key in view.seen:
        return view

    seen = view.seen | {event.key}
    if event.table == ORDER_RECEIPTS:
        return replace(view, receipts=view.receipts + (dict(event.record),), seen=seen)
    if event.table == ORDER_TIMELINE:
        return replace(view, timeline=view.timeline + (dict(event.record),), seen=seen)

    logger.warning(f"⚠️ 未知的变更表: {event.table}")
    return view
