from sqlmodel import Field
from typing import Optional
from decimal import Decimal
from datetime import datetime
from enum import Enum
from models.base import BaseModel


class OrderStatus(str, Enum):
    PENDING = "pending"        # 等待付款
    PAID = "paid"              # 已上传第一张凭证
    PROCESSING = "processing"  # 管理员确认收款，等待发送 USDT
    COMPLETED = "completed"    # 已发送交易哈希
    EXPIRED = "expired"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.EXPIRED,
    OrderStatus.REJECTED,
    OrderStatus.CANCELLED,
})


class Network(str, Enum):
    TRC20 = "TRC20"
    ERC20 = "ERC20"
    BEP20 = "BEP20"
    POLYGON = "POLYGON"


class Order(BaseModel, table=True):
    """USDT 购买订单表"""
    __tablename__ = "orders"

    user_id: str = Field(index=True)
    amount: Decimal = Field(max_digits=20, decimal_places=2)  # USDT 数量
    network: str = Field(max_length=20)  # 'TRC20', 'ERC20', 'BEP20', 'POLYGON'
    wallet_address: str = Field(max_length=255)
    locked_price: Decimal = Field(max_digits=20, decimal_places=4)
    total: Decimal = Field(max_digits=20, decimal_places=2)  # BRL = amount * locked_price，创建后不再重算
    status: str = Field(default=OrderStatus.PENDING.value, max_length=20, index=True)
    locked_at: datetime = Field(nullable=False)
    payment_confirmed_at: Optional[datetime] = Field(default=None)
    transaction_hash: Optional[str] = Field(default=None, max_length=100)
    receipt_url: Optional[str] = Field(default=None, max_length=500)  # 旧版单凭证字段
    hash_viewed_at: Optional[datetime] = Field(default=None)
    hash_viewed_count: int = Field(default=0)
