"""
订单核心的异常体系
"""
from typing import List, Optional


class OrderError(Exception):
    """订单相关错误基类"""


class ValidationError(OrderError):
    """输入不合法（金额、网络、钱包、哈希格式等），不产生任何状态变更"""


class LimitExceeded(ValidationError):
    """凭证数量超过上限"""

    def __init__(self, limit: int):
        super().__init__(f"最多只能上传 {limit} 个凭证")
        self.limit = limit


class PreconditionError(OrderError):
    """前置条件不满足（锁价过期、未登录、订单已终止）"""


class ConcurrencyConflict(OrderError):
    """乐观并发冲突：订单状态已被其他写入方改变"""

    def __init__(self, order_id: str, expected, actual: Optional[str]):
        expected_str = ", ".join(sorted(str(getattr(s, "value", s)) for s in expected))
        super().__init__(f"订单 {order_id} 状态为 {actual}，期望 {expected_str}")
        self.order_id = order_id
        self.expected = expected
        self.actual = actual


class PartialFailure(OrderError):
    """多文件提交中某个文件失败，之前的文件已提交"""

    def __init__(self, failed_file: str, committed: List, cause: Exception):
        super().__init__(f"凭证 {failed_file} 上传失败: {cause}")
        self.failed_file = failed_file
        self.committed = committed
        self.cause = cause


class TransientUpstreamError(OrderError):
    """上游暂时不可用（行情、通知）"""
