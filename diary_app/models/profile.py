"""
用户资料数据模型
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class Profile(BaseModel):
    """用户资料模型，id 与身份 id 一致"""

    id: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    """更新资料请求模型"""
    username: Optional[str] = None
