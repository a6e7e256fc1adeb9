"""
日记数据模型
定义日记条目、分类等数据结构
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class Category(str, Enum):
    """日记分类"""

    DREAM = "Dream"
    TRAVEL = "Travel"
    HOME = "Home"
    WORK = "Work"
    PERSONAL = "Personal"


class CategoryInfo(BaseModel):
    """分类展示信息"""
    name: Category
    description: str
    entry_count: int = 0


CATEGORY_DESCRIPTIONS: Dict[Category, str] = {
    Category.DREAM: "Record your dreams and aspirations",
    Category.TRAVEL: "Document your adventures and journeys",
    Category.HOME: "Capture moments from your daily life at home",
    Category.WORK: "Track your professional growth and experiences",
    Category.PERSONAL: "Express your thoughts and feelings",
}


class DiaryEntry(BaseModel):
    """日记条目模型"""

    id: str
    user_id: str
    title: str
    content: str
    category: Category
    created_at: datetime
    updated_at: datetime
    image_url: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DiaryEntry":
        """
        从数据表行构建日记条目

        Args:
            row: diary_entries 表的一行

        Returns:
            日记条目
        """
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=row.get("title") or "",
            content=row.get("content") or "",
            category=row["category"],
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            image_url=row.get("image_url") or None,
        )


class DiaryEntryCreate(BaseModel):
    """创建日记请求模型"""
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    category: Category
    image_url: Optional[str] = None


class DiaryEntryUpdate(BaseModel):
    """更新日记请求模型，只提交显式设置的字段"""
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = Field(default=None, min_length=1)
    category: Optional[Category] = None
    image_url: Optional[str] = None
