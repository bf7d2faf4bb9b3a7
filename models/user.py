from sqlmodel import Field
from typing import Optional
from models.base import BaseModel

class User(BaseModel, table=True):
    """身份存储中的用户（认证方）"""
    __tablename__ = "users"

    email: str = Field(unique=True, index=True)
    password_hash: str = Field(default="")
    is_admin: bool = False


class Profile(BaseModel, table=True):
    """用户资料，id 与 users.id 一致"""
    __tablename__ = "profiles"

    full_name: str = Field(max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)  # 可能为空，需要回查 users
    document_type: str = Field(default="CPF", max_length=20)
    document_number: str = Field(default="", max_length=50)
