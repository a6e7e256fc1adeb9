"""
账号注销服务
验证密码后依次清理头像、日记、资料，最后删除认证身份

清理步骤失败只记录并作为警告返回；只有删除身份失败才算注销失败
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel
from diary_app.backend.base import BackendClient
from diary_app.models.auth import Identity
from diary_app.services.entry_store import EntryStore
from diary_app.services.profile_service import avatar_storage_path
from diary_app.services.session_store import SessionStore
from diary_app.utils.config import settings
from diary_app.utils.errors import AuthError, DiaryError, RemoteError, ValidationError
from diary_app.utils.logger import logger


class DeletionState(str, Enum):
    """注销流程状态"""

    IDLE = "idle"
    CONFIRMING = "confirming"
    VERIFYING = "verifying"
    PURGING = "purging"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class AccountDeletionResult(BaseModel):
    """注销结果"""

    state: DeletionState
    message: str
    redirect_to: str = "/"
    warnings: List[str] = []


class AccountLifecycleCoordinator:
    """账号注销协调器"""

    def __init__(self, backend: BackendClient, session_store: SessionStore,
                 entry_store: Optional[EntryStore] = None):
        """
        初始化注销协调器

        Args:
            backend: 后端客户端
            session_store: 会话状态服务
            entry_store: 日记条目服务，日记删除后同步清空其缓存
        """
        self.backend = backend
        self.session_store = session_store
        self.entry_store = entry_store
        self.state = DeletionState.IDLE
        self.last_error: Optional[str] = None

    def request_deletion(self) -> DeletionState:
        """打开密码确认步骤"""
        self.session_store.require_identity()
        if self.state not in (DeletionState.IDLE, DeletionState.CONFIRMING,
                              DeletionState.DONE, DeletionState.FAILED):
            raise ValidationError("Account deletion is already in progress.")

        self.state = DeletionState.CONFIRMING
        self.last_error = None
        return self.state

    def cancel(self) -> DeletionState:
        """关闭密码确认步骤"""
        if self.state != DeletionState.CONFIRMING:
            raise ValidationError("No account deletion awaiting confirmation.")
        self.state = DeletionState.IDLE
        return self.state

    def _fail(self, error: DiaryError) -> DiaryError:
        self.state = DeletionState.FAILED
        self.last_error = error.message
        return error

    async def delete_account(self, password: str) -> AccountDeletionResult:
        """
        执行注销流程

        Args:
            password: 当前密码，用于重新验证身份

        Returns:
            注销结果（包含清理步骤的警告）
        """
        if self.state != DeletionState.CONFIRMING:
            raise ValidationError("Please confirm account deletion first.")
        if not password:
            raise ValidationError("Please enter your password to confirm deletion.")

        identity = self.session_store.require_identity()
        self.state = DeletionState.VERIFYING
        logger.info(f"开始注销账号: {identity.id}")

        with self.session_store.suppress_events():
            try:
                warnings = await self._run_steps(identity, password)
            except DiaryError as e:
                raise self._fail(e)
            except Exception as e:
                logger.error(f"注销流程异常: {identity.id}: {e}")
                raise self._fail(RemoteError(f"Failed to delete account: {e}")) from e

        self.state = DeletionState.DONE
        await self.session_store.clear()
        logger.info(f"账号已注销: {identity.id}")

        return AccountDeletionResult(
            state=self.state,
            message="Your account has been permanently deleted",
            redirect_to="/",
            warnings=warnings
        )

    async def _run_steps(self, identity: Identity, password: str) -> List[str]:
        """验证密码、退出登录、清理数据并删除身份，返回清理警告"""
        try:
            await self.backend.sign_in_with_password(identity.email, password)
        except DiaryError as e:
            logger.warning(f"注销前密码验证失败: {e.message}")
            raise self._fail(AuthError("Incorrect password. Please try again."))

        avatar_path = await self._lookup_avatar_path(identity)

        try:
            await self.backend.sign_out()
        except DiaryError as e:
            logger.error(f"注销前退出登录失败: {e.message}")
            raise self._fail(e)

        self.state = DeletionState.PURGING
        warnings = await self._purge(identity, avatar_path)

        self.state = DeletionState.FINALIZING
        try:
            await self.backend.invoke_privileged(
                settings.delete_user_function, {"user_id": identity.id}
            )
        except DiaryError as e:
            logger.error(f"删除认证身份失败: {identity.id}: {e.message}")
            raise self._fail(RemoteError(f"Failed to delete account: {e.message}"))

        return warnings

    async def _lookup_avatar_path(self, identity: Identity) -> Optional[str]:
        try:
            rows = await self.backend.select(settings.profiles_table, {"id": identity.id})
        except DiaryError as e:
            logger.error(f"读取头像地址失败: {e.message}")
            return None

        avatar_url = rows[0].get("avatar_url") if rows else None
        return avatar_storage_path(avatar_url) if avatar_url else None

    async def _purge(self, identity: Identity, avatar_path: Optional[str]) -> List[str]:
        """清理头像、日记和资料，逐步尽力执行，返回失败警告"""
        warnings = []

        if avatar_path:
            try:
                await self.backend.delete_object(settings.avatar_bucket, avatar_path, privileged=True)
            except DiaryError as e:
                logger.error(f"删除头像失败: {e.message}")
                warnings.append(f"Your avatar could not be removed: {e.message}")

        try:
            await self.backend.delete(
                settings.entries_table, {"user_id": identity.id}, privileged=True
            )
            if self.entry_store is not None:
                self.entry_store.clear_cache()
        except DiaryError as e:
            logger.error(f"删除日记失败: {e.message}")
            warnings.append(f"Some diary entries could not be removed: {e.message}")

        try:
            await self.backend.delete(
                settings.profiles_table, {"id": identity.id}, privileged=True
            )
        except DiaryError as e:
            logger.error(f"删除资料失败: {e.message}")
            warnings.append(f"Your profile could not be removed: {e.message}")

        return warnings
