from sqlmodel import Field, Column
from sqlalchemy import JSON
from typing import Optional, Dict, Any
from enum import Enum
from models.base import BaseModel


class EventType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_EXPIRED = "order_expired"
    RECEIPT_UPLOADED = "receipt_uploaded"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAYMENT_CONFIRMED = "payment_confirmed"
    USDT_SENT = "usdt_sent"
    PAYMENT_REJECTED = "payment_rejected"
    HASH_VIEWED = "hash_viewed"
    ORDER_CANCELLED = "order_cancelled"


class ActorType(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


class OrderTimeline(BaseModel, table=True):
    """订单时间线（审计日志，只追加）"""
    __tablename__ = "order_timeline"

    order_id: str = Field(foreign_key="orders.id", index=True)
    event_type: str = Field(max_length=50)
    message: str
    actor_type: str = Field(max_length=20)
    # metadata 是 SQLAlchemy 保留字，属性名改为 event_metadata
    event_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON))
