"""
认证数据模型
定义身份、会话以及认证状态变更事件
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel


class Identity(BaseModel):
    """后端持有的用户身份（只读副本）"""

    id: str
    email: str = ""
    email_confirmed_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: Dict[str, Any]) -> "Identity":
        """根据后端返回的 user 对象构建身份"""
        return cls(
            id=str(user["id"]),
            email=user.get("email") or "",
            email_confirmed_at=user.get("email_confirmed_at") or user.get("confirmed_at"),
        )


class Session(BaseModel):
    """认证会话"""

    access_token: str
    refresh_token: str = ""
    expires_at: Optional[int] = None
    identity: Identity

    def is_expired(self, now: float) -> bool:
        """会话是否已过期（expires_at 为 Unix 秒）"""
        return self.expires_at is not None and self.expires_at <= now


class AuthEventKind(str, Enum):
    """认证状态变更事件类型"""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


class AuthEvent(BaseModel):
    """带标签的认证事件"""

    kind: AuthEventKind
    session: Optional[Session] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.identity if self.session else None


class SignUpResult(BaseModel):
    """注册结果"""

    identity: Optional[Identity] = None
    message: str
