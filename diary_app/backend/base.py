"""
后端能力接口
定义应用依赖的托管后端（认证、数据行、对象存储、远程函数）的全部操作
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
from diary_app.backend.events import AuthCallback, AuthEventChannel
from diary_app.models.auth import AuthEvent, AuthEventKind, Identity, Session


Row = Dict[str, Any]


class BackendClient(ABC):
    """托管后端客户端基类"""

    def __init__(self):
        """初始化客户端"""
        self.auth_events = AuthEventChannel()

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        """
        订阅认证状态变化

        Args:
            callback: 接收 AuthEvent 的回调

        Returns:
            取消订阅函数
        """
        return self.auth_events.subscribe(callback)

    async def _notify(self, kind: AuthEventKind, session: Optional[Session]) -> None:
        await self.auth_events.emit(AuthEvent(kind=kind, session=session))

    # 认证

    @abstractmethod
    async def get_session(self) -> Optional[Session]:
        """返回当前会话，没有则返回None"""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """邮箱密码登录"""

    @abstractmethod
    async def sign_up(self, email: str, password: str,
                      redirect_to: Optional[str] = None) -> Identity:
        """注册新用户"""

    @abstractmethod
    async def sign_out(self) -> None:
        """退出登录"""

    @abstractmethod
    async def update_password(self, new_password: str) -> Identity:
        """修改当前用户的密码"""

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        """发送重置密码邮件"""

    @abstractmethod
    async def set_recovery_session(self, access_token: str,
                                   refresh_token: str = "") -> Session:
        """使用重置密码链接中的令牌建立会话"""

    # 数据行

    @abstractmethod
    async def select(self, table: str, filters: Dict[str, Any],
                     order: Optional[str] = None, descending: bool = True) -> List[Row]:
        """按等值条件查询"""

    @abstractmethod
    async def insert(self, table: str, row: Row) -> List[Row]:
        """插入一行并返回插入结果"""

    @abstractmethod
    async def update(self, table: str, values: Row, filters: Dict[str, Any]) -> List[Row]:
        """按等值条件更新，返回受影响的行"""

    @abstractmethod
    async def upsert(self, table: str, row: Row, on_conflict: str = "id") -> List[Row]:
        """插入或更新一行"""

    @abstractmethod
    async def delete(self, table: str, filters: Dict[str, Any],
                     privileged: bool = False) -> List[Row]:
        """按等值条件删除，返回被删除的行"""

    # 对象存储

    @abstractmethod
    async def upload_object(self, bucket: str, path: str, data: bytes,
                            content_type: str = "application/octet-stream") -> str:
        """上传对象并返回公开URL"""

    @abstractmethod
    async def delete_object(self, bucket: str, path: str, privileged: bool = False) -> None:
        """删除对象"""

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """对象的公开访问地址"""

    # 远程函数

    @abstractmethod
    async def invoke_privileged(self, name: str,
                                params: Optional[Dict[str, Any]] = None) -> Any:
        """调用需要管理权限的远程函数"""

    async def close(self) -> None:
        """释放底层连接"""
