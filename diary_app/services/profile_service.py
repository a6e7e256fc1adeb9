"""
用户资料服务
读取（不存在时自动创建）、修改用户资料，管理头像的上传与删除
"""

import time
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse
from diary_app.backend.base import BackendClient
from diary_app.models.profile import Profile
from diary_app.services.session_store import SessionStore
from diary_app.utils.config import settings
from diary_app.utils.errors import DiaryError, NotFoundError, RemoteError, ValidationError
from diary_app.utils.logger import logger


def avatar_storage_path(avatar_url: str) -> str:
    """
    从头像公开URL中取出存储路径（最后两段：用户ID/文件名）

    Args:
        avatar_url: 头像公开URL

    Returns:
        存储桶内的对象路径
    """
    segments = [s for s in urlparse(avatar_url).path.split("/") if s]
    return "/".join(segments[-2:])


class ProfileService:
    """用户资料服务"""

    def __init__(self, backend: BackendClient, session_store: SessionStore,
                 table: Optional[str] = None, bucket: Optional[str] = None):
        """
        初始化资料服务

        Args:
            backend: 后端客户端
            session_store: 会话状态服务
            table: 资料表名
            bucket: 头像存储桶
        """
        self.backend = backend
        self.session_store = session_store
        self.table = table or settings.profiles_table
        self.bucket = bucket or settings.avatar_bucket

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def get_profile(self) -> Profile:
        """
        获取当前用户的资料，不存在时按邮箱前缀创建

        Returns:
            用户资料
        """
        identity = self.session_store.require_identity()

        rows = await self.backend.select(self.table, {"id": identity.id})
        if rows:
            return Profile(**rows[0])

        logger.info(f"资料不存在，自动创建: {identity.id}")
        created = await self.backend.upsert(self.table, {
            "id": identity.id,
            "username": identity.email.split("@")[0] if identity.email else "",
            "updated_at": self._now()
        }, on_conflict="id")
        if not created:
            raise RemoteError("Failed to create profile")
        return Profile(**created[0])

    async def update_profile(self, username: Optional[str]) -> Profile:
        identity = self.session_store.require_identity()
        rows = await self.backend.update(
            self.table,
            {"username": username, "updated_at": self._now()},
            {"id": identity.id}
        )
        if not rows:
            raise NotFoundError("Profile not found")
        logger.info(f"资料更新成功: {identity.id}")
        return Profile(**rows[0])

    async def upload_avatar(self, data: bytes, filename: str,
                            content_type: Optional[str] = None) -> Profile:
        """
        上传新头像；旧头像尽力删除，失败不影响上传

        Args:
            data: 图片内容
            filename: 原始文件名，用于取扩展名
            content_type: 图片类型

        Returns:
            更新后的资料
        """
        if not data or (content_type and not content_type.startswith("image/")):
            raise ValidationError("Please select an image to upload.")

        identity = self.session_store.require_identity()
        profile = await self.get_profile()

        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "png"
        path = f"{identity.id}/avatar-{int(time.time() * 1000)}.{ext}"

        if profile.avatar_url:
            try:
                await self.backend.delete_object(self.bucket, avatar_storage_path(profile.avatar_url))
            except DiaryError as e:
                logger.error(f"删除旧头像失败: {e.message}")

        try:
            public_url = await self.backend.upload_object(
                self.bucket, path, data, content_type or f"image/{ext}"
            )
        except DiaryError as e:
            logger.error(f"头像上传失败: {e.message}")
            raise RemoteError("Failed to upload image") from e

        rows = await self.backend.update(
            self.table,
            {"avatar_url": public_url, "updated_at": self._now()},
            {"id": identity.id}
        )
        if not rows:
            raise RemoteError("Failed to update profile")

        logger.info(f"头像已更新: {path}")
        return Profile(**rows[0])

    async def remove_avatar(self) -> Profile:
        identity = self.session_store.require_identity()
        profile = await self.get_profile()
        if not profile.avatar_url:
            raise NotFoundError("No avatar to delete")

        try:
            await self.backend.delete_object(self.bucket, avatar_storage_path(profile.avatar_url))
        except DiaryError as e:
            logger.error(f"删除头像文件失败: {e.message}")
            raise RemoteError("Failed to delete avatar file") from e

        rows = await self.backend.update(
            self.table,
            {"avatar_url": None, "updated_at": self._now()},
            {"id": identity.id}
        )
        if not rows:
            raise RemoteError("Failed to update profile")

        logger.info(f"头像已删除: {identity.id}")
        return Profile(**rows[0])
