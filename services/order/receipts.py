"""
付款凭证提交
客户端先把文件放入队列，再逐个（顺序）上传：
上传文件 -> 写入凭证记录 -> 追加时间线事件；
记录写入失败时删除刚上传的文件，然后停止处理剩余文件
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy import func, update
from config.settings import Settings
from models.order import Order, OrderStatus
from models.order_receipt import OrderReceipt
from models.order_timeline import OrderTimeline, EventType, ActorType
from services.notifier import NotificationInterface, notify_safely
from services.order.errors import LimitExceeded, PartialFailure, PreconditionError, ValidationError
from services.order.lifecycle import OrderService, as_record
from services.order.realtime import ChangeEvent, ORDERS, ORDER_RECEIPTS, ORDER_TIMELINE
from services.storage import StorageInterface
from utils.logger import logger

# 可以继续上传凭证的状态
UPLOADABLE_STATUSES = frozenset({OrderStatus.PENDING.value, OrderStatus.PAID.value})


@dataclass(frozen=True)
class QueuedFile:
    file_name: str
    data: bytes
    content_type: Optional[str] = None


class ReceiptQueue:
    """已选择但尚未上传的文件"""

    def __init__(self, existing_count: int, max_receipts: int = 7):
        self.existing_count = existing_count
        self.max_receipts = max_receipts
        self._files: List[QueuedFile] = []

    @property
    def files(self) -> tuple:
        return tuple(self._files)

    @property
    def remaining_slots(self) -> int:
        return max(0, self.max_receipts - self.existing_count - len(self._files))

    def enqueue(self, file: QueuedFile):
        if self.existing_count + len(self._files) >= self.max_receipts:
            raise LimitExceeded(self.max_receipts)
        if not file.data:
            raise ValidationError(f"文件 {file.file_name} 为空")
        self._files.append(file)

    def dequeue(self, index: int) -> QueuedFile:
        """移除一个尚未上传的文件"""
        try:
            return self._files.pop(index)
        except IndexError:
            raise ValidationError(f"队列中没有第 {index} 个文件")

    def mark_first_committed(self):
        """首个文件上传成功后移出队列，计入已有数量"""
        self._files.pop(0)
        self.existing_count += 1

    def clear(self):
        self._files.clear()

    def __len__(self) -> int:
        return len(self._files)


@dataclass
class SubmissionResult:
    receipts: List[OrderReceipt] = field(default_factory=list)
    status: Optional[str] = None
    notified: bool = False


def _safe_file_name(file_name: str) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", file_name.strip())
    return name.strip("._") or "comprovante"


class ReceiptPipeline:
    """凭证提交流水线"""

    def __init__(
        self,
        settings: Settings,
        order_service: OrderService,
        storage: StorageInterface,
        notifier: Optional[NotificationInterface] = None,
        clock: Callable[[], datetime] = None,
    ):
        self.settings = settings
        self.order_service = order_service
        self.storage = storage
        self.notifier = notifier
        self.clock = clock or order_service.clock
        self.bucket = settings.receipt_bucket
        self.max_receipts = settings.max_receipts
        self.link_ttl = settings.signed_url_ttl

    def open_queue(self, order_id: str) -> ReceiptQueue:
        return ReceiptQueue(self.order_service.count_receipts(order_id), self.max_receipts)

    def _check_access(self, order: Order):
        user = self.order_service.identity.current_user()
        if user is None:
            raise PreconditionError("请先登录")
        if order.user_id != str(user.id) and not getattr(user, "is_admin", False):
            raise PreconditionError("无权操作该订单")
        if order.status not in UPLOADABLE_STATUSES:
            raise PreconditionError(f"订单状态为 {order.status}，不能再上传凭证")
        return user

    def _storage_path(self, order: Order, number: int, file_name: str) -> str:
        stamp = self.clock().strftime("%Y%m%d%H%M%S%f")
        return f"{order.user_id}/{order.id}/{stamp}_{number}_{_safe_file_name(file_name)}"

    def _insert_receipt(self, order: Order, path: str, file: QueuedFile, number: int, uploaded_by: str):
        """写入凭证记录和时间线事件（同一事务）"""
        now = self.clock()
        receipt = OrderReceipt(
            order_id=order.id,
            file_url=path,
            file_name=file.file_name,
            uploaded_at=now,
            uploaded_by=uploaded_by,
            created_at=now,
            updated_at=now,
        )
        event = OrderTimeline(
            order_id=order.id,
            event_type=EventType.RECEIPT_UPLOADED.value,
            message=f"Comprovante {number} enviado: {file.file_name}",
            actor_type=ActorType.USER.value,
            event_metadata={"receipt_id": receipt.id, "file_name": file.file_name, "number": number},
            created_at=now,
            updated_at=now,
        )
        values = {"updated_at": now}
        if number == 1:
            # 旧版单凭证字段
            values["receipt_url"] = func.coalesce(Order.receipt_url, path)
        with self.settings.get_session() as session:
            # 上传期间订单可能已过期：状态校验和写入在同一事务
            result = session.exec(
                update(Order)
                .where(Order.id == order.id)
                .where(Order.status.in_(sorted(UPLOADABLE_STATUSES)))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise PreconditionError(f"订单 {order.id} 状态已变化，不能再上传凭证")
            session.add(receipt)
            session.add(event)
        return receipt, event

    def _rollback_upload(self, path: str):
        """补偿：删除记录写入失败的文件（只尝试一次）"""
        try:
            self.storage.remove(self.bucket, [path])
            logger.info(f"↩️ 已回滚上传文件 {path}")
        except Exception as e:
            logger.error(f"❌ 回滚上传文件 {path} 失败: {e}", exc_info=True)

    def submit_all(self, order_id: str, queue: ReceiptQueue) -> SubmissionResult:
        """按顺序提交队列中的所有文件

        Raises:
            ValidationError: 队列为空
            LimitExceeded: 服务端凭证数量加队列超过上限
            PreconditionError: 未登录、无权限或订单状态不允许上传
            PartialFailure: 某个文件失败，之前的文件已提交
        """
        if len(queue) == 0:
            raise ValidationError("请先选择凭证文件")

        order = self.order_service.get_order(order_id)
        user = self._check_access(order)

        existing = self.order_service.count_receipts(order_id)
        if existing + len(queue) > self.max_receipts:
            raise LimitExceeded(self.max_receipts)

        result = SubmissionResult()
        failure: Optional[PartialFailure] = None

        for number, file in enumerate(queue.files, start=existing + 1):
            path = self._storage_path(order, number, file.file_name)
            try:
                self.storage.upload(self.bucket, path, file.data)
            except Exception as e:
                logger.error(f"❌ 上传凭证 {file.file_name} 失败: {e}", exc_info=True)
                failure = PartialFailure(file.file_name, result.receipts, e)
                break

            try:
                receipt, event = self._insert_receipt(order, path, file, number, str(user.id))
            except PreconditionError as e:
                logger.warning(f"⚠️ 凭证 {file.file_name} 未写入: {e}")
                self._rollback_upload(path)
                if not result.receipts:
                    raise
                failure = PartialFailure(file.file_name, result.receipts, e)
                break
            except Exception as e:
                logger.error(f"❌ 写入凭证记录 {file.file_name} 失败: {e}", exc_info=True)
                self._rollback_upload(path)
                failure = PartialFailure(file.file_name, result.receipts, e)
                break

            queue.mark_first_committed()
            result.receipts.append(receipt)
            logger.info(f"✅ 凭证 {number} 已提交: {file.file_name} (order={order_id})")
            self.order_service.feed.publish(ChangeEvent(ORDER_RECEIPTS, "INSERT", order_id, as_record(receipt)))
            self.order_service.feed.publish(ChangeEvent(ORDER_TIMELINE, "INSERT", order_id, as_record(event)))
            if number == 1:
                self.order_service.feed.publish(
                    ChangeEvent(ORDERS, "UPDATE", order_id, as_record(self.order_service.get_order(order_id)))
                )

        if existing == 0 and result.receipts:
            try:
                self.order_service.mark_paid(order_id)
            except PreconditionError as e:
                # 订单在提交过程中已被其他操作改变（如过期）
                logger.warning(f"⚠️ 订单 {order_id} 无法标记为已付款: {e}")

        result.status = self.order_service.get_order(order_id).status

        if result.receipts:
            result.notified = self._notify_operator(order, result.receipts, existing + len(result.receipts))

        if failure is not None:
            raise failure
        return result

    def receipt_links(self, receipts: List[OrderReceipt]) -> List[str]:
        """凭证的限时查看链接；文件已不存在的跳过"""
        links = []
        for receipt in receipts:
            try:
                links.append(self.storage.create_signed_url(self.bucket, receipt.file_url, self.link_ttl))
            except FileNotFoundError:
                logger.warning(f"⚠️ 凭证文件不存在: {receipt.file_url}")
        return links

    def _notify_operator(self, order: Order, receipts: List[OrderReceipt], total: int) -> bool:
        if self.notifier is None or not self.settings.operator_email:
            return False
        return notify_safely(self.notifier, "new-receipt", self.settings.operator_email, {
            "ordem_id": order.id,
            "cliente_id": order.user_id,
            "valor_brl": f"{order.total:.2f}",
            "quantidade_usdt": str(order.amount),
            "novos_comprovantes": len(receipts),
            "links_comprovantes": self.receipt_links(receipts),
            "total_comprovantes": total,
        })
