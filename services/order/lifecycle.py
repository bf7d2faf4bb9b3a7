"""
订单生命周期状态机
所有状态变更都通过带前置状态条件的 UPDATE 完成（乐观并发），
并在同一事务里追加一条时间线事件
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional
from sqlalchemy import func, update
from sqlmodel import select
from config.settings import Settings
from models.order import Order, OrderStatus, Network, TERMINAL_STATUSES
from models.order_receipt import OrderReceipt
from models.order_timeline import OrderTimeline, EventType, ActorType
from services.identity import IdentityInterface
from services.notifier import NotificationInterface, ContactResolver, notify_safely
from services.order.errors import ValidationError, PreconditionError, ConcurrencyConflict
from services.order.realtime import (
    ChangeFeed, ChangeEvent, OrderView, ORDERS, ORDER_RECEIPTS, ORDER_TIMELINE,
)
from services.order.wallet import validate_wallet_address
from services.pricing.price_lock import PriceLock, remaining_seconds
from services.pricing.quote import usdt_to_brl
from utils.logger import logger


# 状态转换表: 目标状态 -> 允许的前置状态
TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.EXPIRED: frozenset({OrderStatus.PENDING}),
    OrderStatus.PAID: frozenset({OrderStatus.PENDING}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.PAID}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.PROCESSING}),
    OrderStatus.REJECTED: frozenset({OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.EXPIRED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.PENDING}),
}

# 管理员“重新打开并确认”：过期订单补收款，属于明确的例外路径
REOPEN_FROM: FrozenSet[OrderStatus] = frozenset({OrderStatus.EXPIRED})


def can_transition(current: str, target: OrderStatus) -> bool:
    return OrderStatus(current) in TRANSITIONS.get(target, frozenset())


def is_terminal(status: str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


@dataclass
class TransitionResult:
    order: Order
    applied: bool


def as_record(model) -> Dict[str, Any]:
    return model.model_dump()


class OrderService:
    """订单服务"""

    def __init__(
        self,
        settings: Settings,
        identity: IdentityInterface,
        notifier: Optional[NotificationInterface] = None,
        feed: Optional[ChangeFeed] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.identity = identity
        self.notifier = notifier
        self.contacts = ContactResolver(identity)
        self.feed = feed or ChangeFeed()
        self.clock = clock
        self.payment_window_seconds = settings.payment_window_seconds
        self.min_amount = settings.min_order_amount

    # ========== 查询 ==========

    def get_order(self, order_id: str) -> Order:
        with self.settings.get_session() as session:
            order = session.get(Order, order_id)
        if order is None:
            raise PreconditionError(f"订单 {order_id} 不存在")
        return order

    def list_receipts(self, order_id: str) -> List[OrderReceipt]:
        with self.settings.get_session() as session:
            return list(session.exec(
                select(OrderReceipt)
                .where(OrderReceipt.order_id == order_id)
                .order_by(OrderReceipt.uploaded_at, OrderReceipt.created_at)
            ).all())

    def count_receipts(self, order_id: str) -> int:
        with self.settings.get_session() as session:
            return session.exec(
                select(func.count()).select_from(OrderReceipt).where(OrderReceipt.order_id == order_id)
            ).one()

    def get_timeline(self, order_id: str) -> List[OrderTimeline]:
        with self.settings.get_session() as session:
            return list(session.exec(
                select(OrderTimeline)
                .where(OrderTimeline.order_id == order_id)
                .order_by(OrderTimeline.created_at)
            ).all())

    def load_view(self, order_id: str) -> OrderView:
        """页面初次加载的视图，之后由实时事件合并"""
        order = self.get_order(order_id)
        receipts = tuple(as_record(r) for r in self.list_receipts(order_id))
        timeline = tuple(as_record(e) for e in self.get_timeline(order_id))
        seen = frozenset(
            [(ORDER_RECEIPTS, str(r["id"])) for r in receipts]
            + [(ORDER_TIMELINE, str(e["id"])) for e in timeline]
        )
        return OrderView(order=as_record(order), receipts=receipts, timeline=timeline, seen=seen)

    def remaining_payment_seconds(self, order: Order) -> int:
        """以数据库中的 locked_at 为准计算付款剩余时间"""
        return remaining_seconds(order.locked_at, self.payment_window_seconds, self.clock())

    # ========== 创建 ==========

    def create_order(
        self,
        lock: Optional[PriceLock],
        amount,
        network: str,
        wallet_address: str,
    ) -> Order:
        """锁价有效期内创建订单"""
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"数量无效: {amount}")
        if amount < self.min_amount:
            raise ValidationError(f"最小购买数量为 {self.min_amount} USDT")

        if not network:
            raise ValidationError("请选择网络")
        try:
            network = Network(network).value
        except ValueError:
            raise ValidationError(f"不支持的网络: {network}")

        valid, error = validate_wallet_address(wallet_address, network)
        if not valid:
            raise ValidationError(error)

        user = self.identity.current_user()
        if user is None:
            raise PreconditionError("请先登录")

        now = self.clock()
        if lock is None:
            raise PreconditionError("请先锁定价格")
        if remaining_seconds(lock.locked_at, lock.duration_seconds, now) == 0:
            raise PreconditionError("锁定价格已过期，请重新锁价")
        if lock.amount is not None and lock.amount != amount:
            raise PreconditionError("数量已变更，请重新锁价")

        order = Order(
            user_id=str(user.id),
            amount=amount,
            network=network,
            wallet_address=wallet_address.strip(),
            locked_price=lock.locked_price,
            total=usdt_to_brl(amount, lock.locked_price),
            status=OrderStatus.PENDING.value,
            locked_at=now,
            created_at=now,
            updated_at=now,
        )
        event = OrderTimeline(
            order_id=order.id,
            event_type=EventType.ORDER_CREATED.value,
            message="Ordem criada - Aguardando pagamento",
            actor_type=ActorType.USER.value,
            created_at=now,
            updated_at=now,
        )
        with self.settings.get_session() as session:
            session.add(order)
            session.flush()
            session.add(event)

        logger.info(f"✅ 订单已创建: {order.id} {amount} USDT @ {lock.locked_price} = R$ {order.total}")
        self.feed.publish(ChangeEvent(ORDERS, "INSERT", order.id, as_record(order)))
        self.feed.publish(ChangeEvent(ORDER_TIMELINE, "INSERT", order.id, as_record(event)))
        return order

    # ========== 状态转换 ==========

    def _transition(
        self,
        order_id: str,
        expected: Iterable[OrderStatus],
        target: OrderStatus,
        event_type: EventType,
        actor: ActorType,
        message: str,
        values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        conditions: Iterable = (),
    ) -> TransitionResult:
        """带前置状态条件的状态更新

        先读取订单：当前状态不在 expected 中说明请求本身不合法（PreconditionError）；
        读取之后被其他写入方抢先修改时 UPDATE 命中 0 行，视为并发冲突，
        放弃本次转换并返回最新状态。
        """
        expected = frozenset(expected)
        order = self.get_order(order_id)
        if OrderStatus(order.status) not in expected:
            raise PreconditionError(f"订单当前状态 {order.status} 不允许转换为 {target.value}")

        now = self.clock()
        event = OrderTimeline(
            order_id=order_id,
            event_type=event_type.value,
            message=message,
            actor_type=actor.value,
            event_metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.status.in_([s.value for s in expected]))
            .values(status=target.value, updated_at=now, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        for condition in conditions:
            stmt = stmt.where(condition)

        with self.settings.get_session() as session:
            result = session.exec(stmt)
            applied = result.rowcount == 1
            if applied:
                session.add(event)
            updated = session.get(Order, order_id)
            session.refresh(updated)

        if not applied:
            conflict = ConcurrencyConflict(order_id, expected, updated.status)
            logger.info(f"⏭️ 放弃状态转换 -> {target.value}: {conflict}")
            return TransitionResult(order=updated, applied=False)

        logger.info(f"🔄 订单 {order_id}: {order.status} -> {target.value} ({event_type.value})")
        self.feed.publish(ChangeEvent(ORDERS, "UPDATE", order_id, as_record(updated)))
        self.feed.publish(ChangeEvent(ORDER_TIMELINE, "INSERT", order_id, as_record(event)))
        return TransitionResult(order=updated, applied=True)

    def _has_receipt(self, order_id: str):
        return select(OrderReceipt.id).where(OrderReceipt.order_id == order_id).exists()

    def expire_if_due(self, order_id: str) -> bool:
        """付款窗口结束且仍为 pending 时标记为过期

        条件在同一条 UPDATE 中检查：状态仍为 pending、没有任何凭证、
        未被确认收款，凭证同时到达时优先保留 paid。
        """
        order = self.get_order(order_id)
        if order.status != OrderStatus.PENDING.value:
            return False

        cutoff = self.clock() - timedelta(seconds=self.payment_window_seconds)
        try:
            result = self._transition(
                order_id,
                expected=TRANSITIONS[OrderStatus.EXPIRED],
                target=OrderStatus.EXPIRED,
                event_type=EventType.ORDER_EXPIRED,
                actor=ActorType.SYSTEM,
                message="Ordem expirada - tempo de pagamento esgotado",
                conditions=(
                    Order.locked_at <= cutoff,
                    Order.payment_confirmed_at.is_(None),
                    ~self._has_receipt(order_id),
                ),
            )
        except PreconditionError:
            # 读取之后状态已被改变
            return False
        return result.applied

    def mark_paid(self, order_id: str) -> TransitionResult:
        """第一张凭证提交后 pending -> paid"""
        return self._transition(
            order_id,
            expected=TRANSITIONS[OrderStatus.PAID],
            target=OrderStatus.PAID,
            event_type=EventType.PAYMENT_SUBMITTED,
            actor=ActorType.USER,
            message="Comprovante de pagamento enviado - aguardando confirmação",
            conditions=(self._has_receipt(order_id),),
        )

    def _require_receipt(self, order: Order):
        if self.count_receipts(order.id) == 0 and not order.receipt_url:
            raise PreconditionError("订单没有付款凭证，无法确认收款")

    def confirm_payment(self, order_id: str, admin_id: str) -> TransitionResult:
        """管理员确认收到银行转账 paid -> processing"""
        order = self.get_order(order_id)
        self._require_receipt(order)
        result = self._transition(
            order_id,
            expected=TRANSITIONS[OrderStatus.PROCESSING],
            target=OrderStatus.PROCESSING,
            event_type=EventType.PAYMENT_CONFIRMED,
            actor=ActorType.ADMIN,
            message="OTC confirmou recebimento do PIX",
            values={"payment_confirmed_at": self.clock()},
            metadata={"admin_id": admin_id},
        )
        if result.applied:
            self._notify_payment_confirmed(result.order)
        return result

    def reopen_and_confirm(self, order_id: str, admin_id: str) -> TransitionResult:
        """重新打开并确认：过期订单的迟到付款 expired -> processing"""
        order = self.get_order(order_id)
        self._require_receipt(order)
        result = self._transition(
            order_id,
            expected=REOPEN_FROM,
            target=OrderStatus.PROCESSING,
            event_type=EventType.PAYMENT_CONFIRMED,
            actor=ActorType.ADMIN,
            message="Ordem reaberta e pagamento confirmado",
            values={"payment_confirmed_at": self.clock()},
            metadata={"admin_id": admin_id, "reopened": True},
        )
        if result.applied:
            self._notify_payment_confirmed(result.order)
        return result

    def reject(self, order_id: str, admin_id: str, reason: Optional[str] = None) -> TransitionResult:
        """管理员拒绝付款"""
        return self._transition(
            order_id,
            expected=TRANSITIONS[OrderStatus.REJECTED],
            target=OrderStatus.REJECTED,
            event_type=EventType.PAYMENT_REJECTED,
            actor=ActorType.ADMIN,
            message="Pagamento rejeitado" + (f": {reason}" if reason else ""),
            metadata={"admin_id": admin_id, "reason": reason},
        )

    def cancel(self, order_id: str) -> TransitionResult:
        """用户取消尚未付款的订单"""
        user = self.identity.current_user()
        if user is None:
            raise PreconditionError("请先登录")
        order = self.get_order(order_id)
        if order.user_id != str(user.id):
            raise PreconditionError("无权操作该订单")
        return self._transition(
            order_id,
            expected=TRANSITIONS[OrderStatus.CANCELLED],
            target=OrderStatus.CANCELLED,
            event_type=EventType.ORDER_CANCELLED,
            actor=ActorType.USER,
            message="Ordem cancelada pelo cliente",
        )

    def complete(self, order_id: str, transaction_hash: str, admin_id: str) -> TransitionResult:
        """发送 USDT 后记录哈希 processing -> completed（哈希须已校验）"""
        return self._transition(
            order_id,
            expected=TRANSITIONS[OrderStatus.COMPLETED],
            target=OrderStatus.COMPLETED,
            event_type=EventType.USDT_SENT,
            actor=ActorType.ADMIN,
            message="USDT enviado para sua carteira",
            values={"transaction_hash": transaction_hash},
            metadata={"transaction_hash": transaction_hash, "admin_id": admin_id},
        )

    def record_hash_view(self, order_id: str) -> Order:
        """客户查看交易哈希（只记录，不改变状态）"""
        now = self.clock()
        order = self.get_order(order_id)
        if order.status != OrderStatus.COMPLETED.value or not order.transaction_hash:
            raise PreconditionError("订单尚未发送交易哈希")

        event = OrderTimeline(
            order_id=order_id,
            event_type=EventType.HASH_VIEWED.value,
            message="Cliente visualizou a hash da transação",
            actor_type=ActorType.USER.value,
            event_metadata={"transaction_hash": order.transaction_hash},
            created_at=now,
            updated_at=now,
        )
        with self.settings.get_session() as session:
            session.exec(
                update(Order)
                .where(Order.id == order_id)
                .values(
                    hash_viewed_at=now,
                    hash_viewed_count=Order.hash_viewed_count + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            session.add(event)
            updated = session.get(Order, order_id)
            session.refresh(updated)

        self.feed.publish(ChangeEvent(ORDERS, "UPDATE", order_id, as_record(updated)))
        self.feed.publish(ChangeEvent(ORDER_TIMELINE, "INSERT", order_id, as_record(event)))
        return updated

    # ========== 通知 ==========

    def _notify_payment_confirmed(self, order: Order) -> bool:
        if self.notifier is None:
            return False
        email = self.contacts.resolve_email(order.user_id)
        if not email:
            logger.warning(f"⚠️ 用户没有邮箱，无法发送 payment-confirmed (order={order.id})")
            return False
        return notify_safely(self.notifier, "payment-confirmed", email, {
            "nome_cliente": self.contacts.full_name(order.user_id),
            "valor_brl": f"{order.total:.2f}",
            "quantidade_usdt": str(order.amount),
            "carteira_destino": order.wallet_address,
        })
