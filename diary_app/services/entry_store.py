"""
日记条目服务
缓存当前用户的日记列表；每次变更后整表重新拉取，并提供本地分类过滤与搜索
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Set, Tuple
from diary_app.backend.base import BackendClient
from diary_app.models.auth import Identity
from diary_app.models.diary import Category, DiaryEntry, DiaryEntryCreate, DiaryEntryUpdate
from diary_app.services.session_store import SessionStore
from diary_app.utils.config import settings
from diary_app.utils.errors import ConflictError, DiaryError, NotFoundError
from diary_app.utils.logger import logger


class EntryStore:
    """日记条目服务"""

    def __init__(self, backend: BackendClient, session_store: SessionStore,
                 table: Optional[str] = None):
        """
        初始化日记条目服务，并监听会话身份的变化

        Args:
            backend: 后端客户端
            session_store: 会话状态服务
            table: 日记表名，默认使用配置
        """
        self.backend = backend
        self.session_store = session_store
        self.table = table or settings.entries_table
        self.loading = False
        self._entries: Tuple[DiaryEntry, ...] = ()
        self._in_flight: Set[str] = set()
        self._remove_listener = session_store.add_listener(self._on_identity_change)

    def close(self) -> None:
        """停止监听身份变化"""
        self._remove_listener()

    # 读取

    def list_entries(self) -> List[DiaryEntry]:
        """
        返回缓存的日记列表（按创建时间倒序，顺序来自远程查询）

        Returns:
            日记列表的副本
        """
        return list(self._entries)

    def get_entry(self, entry_id: str) -> DiaryEntry:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        raise NotFoundError("Entry not found")

    def filter_by_category(self, category: Category) -> List[DiaryEntry]:
        """按分类过滤，不修改缓存"""
        category = Category(category)
        return [entry for entry in self._entries if entry.category == category]

    def search(self, query: str) -> List[DiaryEntry]:
        """
        在标题和内容中做不区分大小写的子串匹配

        Args:
            query: 搜索关键词

        Returns:
            匹配的日记列表，不修改缓存
        """
        needle = query.lower()
        return [
            entry for entry in self._entries
            if needle in entry.title.lower() or needle in entry.content.lower()
        ]

    def count_by_category(self) -> Dict[Category, int]:
        counts = {category: 0 for category in Category}
        for entry in self._entries:
            counts[entry.category] += 1
        return counts

    # 同步

    async def _on_identity_change(self, identity: Optional[Identity]) -> None:
        try:
            await self.refresh()
        except DiaryError as e:
            logger.error(f"身份变化后拉取日记失败: {e.message}")

    async def refresh(self) -> List[DiaryEntry]:
        """
        整表重新拉取当前用户的日记；失败时保留上一次成功的结果

        Returns:
            最新的日记列表
        """
        identity = self.session_store.identity
        if identity is None:
            self._entries = ()
            return []

        self.loading = True
        try:
            rows = await self.backend.select(
                self.table,
                {"user_id": identity.id},
                order="created_at",
                descending=True
            )
            entries = tuple(DiaryEntry.from_row(row) for row in rows)
        except DiaryError as e:
            logger.error(f"获取日记列表失败: {e.message}")
            raise
        finally:
            self.loading = False

        # 拉取期间身份可能已经变化
        if self.session_store.identity is None or self.session_store.identity.id != identity.id:
            logger.warning("拉取期间身份已变化，丢弃结果")
            return self.list_entries()

        self._entries = entries
        logger.info(f"日记列表已更新: {len(entries)} 条")
        return self.list_entries()

    def clear_cache(self) -> None:
        """远程日记已被整体删除时清空缓存"""
        self._entries = ()

    @contextmanager
    def _single_flight(self, entry_id: str) -> Iterator[None]:
        if entry_id in self._in_flight:
            raise ConflictError("This entry is already being updated. Please wait.")
        self._in_flight.add(entry_id)
        try:
            yield
        finally:
            self._in_flight.discard(entry_id)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # 变更

    async def create_entry(self, draft: DiaryEntryCreate) -> DiaryEntry:
        """
        创建日记并重新拉取列表

        Args:
            draft: 日记内容

        Returns:
            新建的日记
        """
        identity = self.session_store.require_identity()
        now = self._now()
        row = {
            "user_id": identity.id,
            "title": draft.title,
            "content": draft.content,
            "category": Category(draft.category).value,
            "image_url": draft.image_url,
            "created_at": now,
            "updated_at": now
        }

        try:
            inserted = await self.backend.insert(self.table, row)
        except DiaryError as e:
            logger.error(f"创建日记失败: {e.message}")
            raise

        await self.refresh()
        if inserted:
            created_id = str(inserted[0]["id"])
            logger.info(f"日记创建成功: {created_id}")
            for entry in self._entries:
                if entry.id == created_id:
                    return entry
            return DiaryEntry.from_row(inserted[0])
        raise NotFoundError("Entry was not returned after creation")

    async def update_entry(self, entry_id: str, changes: DiaryEntryUpdate) -> DiaryEntry:
        """
        更新日记（按条目 id 和用户 id 双重过滤）并重新拉取列表

        Args:
            entry_id: 日记ID
            changes: 需要修改的字段

        Returns:
            更新后的日记
        """
        identity = self.session_store.require_identity()
        values = changes.model_dump(exclude_unset=True, mode="json")
        for required in ("title", "content", "category"):
            if values.get(required, "") is None:
                del values[required]
        values["updated_at"] = self._now()

        with self._single_flight(entry_id):
            try:
                updated = await self.backend.update(
                    self.table, values, {"id": entry_id, "user_id": identity.id}
                )
            except DiaryError as e:
                logger.error(f"更新日记失败: {entry_id}: {e.message}")
                raise

            if not updated:
                logger.warning(f"日记不存在: {entry_id}")
                raise NotFoundError("Entry not found")

            await self.refresh()

        logger.info(f"日记更新成功: {entry_id}")
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return DiaryEntry.from_row(updated[0])

    async def delete_entry(self, entry_id: str) -> None:
        """
        删除日记（按条目 id 和用户 id 双重过滤）并重新拉取列表

        Args:
            entry_id: 日记ID
        """
        identity = self.session_store.require_identity()

        with self._single_flight(entry_id):
            try:
                deleted = await self.backend.delete(
                    self.table, {"id": entry_id, "user_id": identity.id}
                )
            except DiaryError as e:
                logger.error(f"删除日记失败: {entry_id}: {e.message}")
                raise

            if not deleted:
                logger.warning(f"日记不存在: {entry_id}")
                raise NotFoundError("Entry not found")

            await self.refresh()

        logger.info(f"日记删除成功: {entry_id}")
