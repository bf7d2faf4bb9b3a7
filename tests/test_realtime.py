"""
实时变更通道与视图合并测试
"""
from datetime import datetime
from models.order import OrderStatus
from models.order_receipt import OrderReceipt
from services.order.realtime import (
    ChangeEvent, ChangeFeed, OrderView, merge, ORDERS, ORDER_RECEIPTS, ORDER_TIMELINE,
)


def order_record(status, updated_at, order_id="o-1"):
    return {"id": order_id, "status": status, "updated_at": updated_at}


class TestMerge:

    def test_duplicate_events_are_idempotent(self):
        """测试重复事件幂等合并"""
        view = OrderView(order=order_record("pending", datetime(2025, 1, 1, 10, 0)))
        receipt = ChangeEvent(ORDER_RECEIPTS, "INSERT", "o-1", {"id": "r-1", "file_name": "pix.pdf"})
        event = ChangeEvent(ORDER_TIMELINE, "INSERT", "o-1",
                            {"id": "t-1", "event_type": "receipt_uploaded", "created_at": datetime(2025, 1, 1, 10, 1)})

        once = merge(merge(view, receipt), event)
        twice = merge(merge(once, receipt), event)

        assert twice == once
        assert once.receipt_count == 1
        assert len(once.timeline) == 1

    def test_merge_does_not_mutate_view(self):
        """测试合并不修改原视图"""
        view = OrderView()
        merge(view, ChangeEvent(ORDER_RECEIPTS, "INSERT", "o-1", {"id": "r-1"}))
        assert view.receipts == ()

    def test_older_order_snapshot_is_ignored(self):
        """测试乱序到达的旧快照被忽略"""
        newer = order_record("paid", datetime(2025, 1, 1, 10, 5))
        older = order_record("pending", datetime(2025, 1, 1, 10, 0))
        view = OrderView(order=newer)

        assert merge(view, ChangeEvent(ORDERS, "UPDATE", "o-1", older)).order["status"] == "paid"

    def test_newer_order_snapshot_replaces(self):
        """测试新快照替换旧快照"""
        view = OrderView(order=order_record("pending", datetime(2025, 1, 1, 10, 0)))
        update = ChangeEvent(ORDERS, "UPDATE", "o-1", order_record("expired", datetime(2025, 1, 1, 10, 5)))

        assert merge(view, update).order["status"] == "expired"

    def test_timeline_sorted_by_creation(self):
        """测试时间线按创建时间排序"""
        view = OrderView()
        late = ChangeEvent(ORDER_TIMELINE, "INSERT", "o-1", {"id": "t-2", "created_at": datetime(2025, 1, 1, 10, 2)})
        early = ChangeEvent(ORDER_TIMELINE, "INSERT", "o-1", {"id": "t-1", "created_at": datetime(2025, 1, 1, 10, 1)})

        view = merge(merge(view, late), early)

        assert [e["id"] for e in view.sorted_timeline()] == ["t-1", "t-2"]


class TestChangeFeed:

    def test_subscriber_only_receives_its_order(self):
        """测试订阅者只收到自己订单的事件"""
        feed = ChangeFeed()
        sub = feed.subscribe("o-1")

        feed.publish(ChangeEvent(ORDER_RECEIPTS, "INSERT", "o-2", {"id": "r-9"}))
        feed.publish(ChangeEvent(ORDER_RECEIPTS, "INSERT", "o-1", {"id": "r-1"}))

        events = sub.drain()
        assert [e.record["id"] for e in events] == ["r-1"]

    def test_closed_subscription_stops_receiving(self):
        """测试关闭订阅后不再接收"""
        feed = ChangeFeed()
        sub = feed.subscribe("o-1")
        sub.close()

        feed.publish(ChangeEvent(ORDER_RECEIPTS, "INSERT", "o-1", {"id": "r-1"}))

        assert sub.get(timeout=0.01) is None
        assert list(sub) == []

    def test_view_follows_service_changes(self, order_service, pending_order, settings, feed, clock):
        """测试视图跟随服务端变更"""
        view = order_service.load_view(pending_order.id)
        sub = feed.subscribe(pending_order.id)

        with settings.get_session() as session:
            session.add(OrderReceipt(order_id=pending_order.id, file_url="x/pix.pdf", file_name="pix.pdf",
                                     uploaded_by=pending_order.user_id))
        clock.advance(30)
        order_service.mark_paid(pending_order.id)

        events = sub.drain()
        for event in events:
            view = merge(view, event)
        replayed = view
        for event in events:
            replayed = merge(replayed, event)

        assert view.order["status"] == OrderStatus.PAID.value
        assert len(view.timeline) == 2
        assert replayed == view
        sub.close()
