from sqlmodel import Field
from datetime import datetime
from models.base import BaseModel

class OrderReceipt(BaseModel, table=True):
    """付款凭证表（只追加）"""
    __tablename__ = "order_receipts"

    order_id: str = Field(foreign_key="orders.id", index=True)
    file_url: str = Field(max_length=500)  # 存储路径
    file_name: str = Field(max_length=255)
    uploaded_at: datetime = Field(default_factory=datetime.now, nullable=False)
    uploaded_by: str = Field(max_length=255)
