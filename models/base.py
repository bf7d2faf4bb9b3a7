from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional
import uuid

class BaseModel(SQLModel):
    """所有表共用的主键和时间戳

    created_at 带索引：时间线和凭证都按它排序；
    updated_at 用于实时合并时丢弃乱序到达的旧快照
    """
    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True,
    )
    created_at: datetime = Field(
        default_factory=datetime.now,
        nullable=False,
        index=True,
    )
    updated_at: datetime = Field(
        default_factory=datetime.now,
        nullable=False,
    )

    def touch(self, now: Optional[datetime] = None):
        """ORM 对象修改后刷新 updated_at"""
        self.updated_at = now or datetime.now()
