"""
内存后端
实现与 Supabase 相同的能力接口，用于本地开发和测试
支持行级权限检查、调用记录以及按操作注入失败
"""

import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type
from uuid import uuid4
from diary_app.backend.base import BackendClient, Row
from diary_app.models.auth import AuthEventKind, Identity, Session
from diary_app.utils.errors import AuthError, RemoteError
from diary_app.utils.logger import logger


class InMemoryBackend(BackendClient):
    """内存后端"""

    # 每张表中标识所属用户的列，未列出的表默认为 user_id
    OWNER_COLUMNS = {"profiles": "id"}

    def __init__(self, base_url: str = "http://localhost:54321", auto_confirm: bool = True):
        """
        初始化内存后端

        Args:
            base_url: 生成公开URL使用的地址
            auto_confirm: 注册后是否直接登录（模拟关闭邮箱验证）
        """
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.auto_confirm = auto_confirm
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tables: Dict[str, List[Row]] = defaultdict(list)
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.sent_emails: List[Tuple[str, str]] = []
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[str, Tuple[Type[Exception], str]] = {}
        self._recovery_tokens: Dict[str, str] = {}
        self._session: Optional[Session] = None

    # 测试辅助

    def add_user(self, email: str, password: str) -> Identity:
        """
        直接创建一个已验证邮箱的用户

        Args:
            email: 邮箱
            password: 密码

        Returns:
            新用户身份
        """
        user = {
            "id": str(uuid4()),
            "email": email,
            "password": password,
            "email_confirmed_at": datetime.now(timezone.utc).isoformat()
        }
        self.users[user["id"]] = user
        return Identity.from_user(user)

    def issue_recovery_token(self, email: str) -> str:
        """为用户生成一个重置密码令牌（相当于邮件中的链接）"""
        user = self._find_user(email)
        if user is None:
            raise AuthError("User not found")
        token = uuid4().hex
        self._recovery_tokens[token] = user["id"]
        return token

    def fail(self, operation: str, message: str = "Simulated failure",
             error_cls: Type[Exception] = RemoteError) -> None:
        """
        让指定操作失败

        Args:
            operation: 操作名，如 "delete_object"、"delete:diary_entries"、
                "invoke_privileged:delete_user"
            message: 错误消息
            error_cls: 抛出的异常类型
        """
        self._failures[operation] = (error_cls, message)

    def clear_failures(self) -> None:
        self._failures.clear()

    def called(self, operation: str) -> bool:
        """是否调用过某个操作（只比较操作名）"""
        return any(op == operation for op, _ in self.calls)

    # 内部辅助

    def _record(self, operation: str, target: str = "") -> None:
        self.calls.append((operation, target))
        for key in (f"{operation}:{target}", operation):
            if key in self._failures:
                error_cls, message = self._failures[key]
                logger.warning(f"模拟失败: {key}")
                raise error_cls(message)

    def _find_user(self, email: str) -> Optional[Dict[str, Any]]:
        for user in self.users.values():
            if user["email"].lower() == email.lower():
                return user
        return None

    def _new_session(self, user: Dict[str, Any]) -> Session:
        return Session(
            access_token=uuid4().hex,
            refresh_token=uuid4().hex,
            expires_at=int(time.time()) + 3600,
            identity=Identity.from_user(user)
        )

    def _require_access(self, privileged: bool) -> Optional[str]:
        """返回当前用户 id；特权调用返回 None 表示不做行级过滤"""
        if privileged:
            return None
        if self._session is None:
            raise AuthError("Not authenticated")
        return self._session.identity.id

    def _owner_column(self, table: str) -> str:
        return self.OWNER_COLUMNS.get(table, "user_id")

    def _visible(self, table: str, row: Row, filters: Dict[str, Any],
                 owner_id: Optional[str]) -> bool:
        if owner_id is not None and str(row.get(self._owner_column(table))) != owner_id:
            return False
        return all(row.get(column) == value for column, value in filters.items())

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # 认证

    async def get_session(self) -> Optional[Session]:
        self._record("get_session")
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        self._record("sign_in_with_password", email)
        user = self._find_user(email)
        if user is None or user["password"] != password:
            raise AuthError("Invalid login credentials", "invalid_credentials")

        self._session = self._new_session(user)
        await self._notify(AuthEventKind.SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email: str, password: str,
                      redirect_to: Optional[str] = None) -> Identity:
        self._record("sign_up", email)
        if self._find_user(email) is not None:
            raise AuthError("User already registered", "user_already_exists")

        user = {
            "id": str(uuid4()),
            "email": email,
            "password": password,
            "email_confirmed_at": self._now() if self.auto_confirm else None
        }
        self.users[user["id"]] = user

        if self.auto_confirm:
            self._session = self._new_session(user)
            await self._notify(AuthEventKind.SIGNED_IN, self._session)
        else:
            self.sent_emails.append((email, redirect_to or ""))
        return Identity.from_user(user)

    async def sign_out(self) -> None:
        self._record("sign_out")
        self._session = None
        await self._notify(AuthEventKind.SIGNED_OUT, None)

    async def update_password(self, new_password: str) -> Identity:
        self._record("update_password")
        if self._session is None:
            raise AuthError("Not authenticated")

        user = self.users.get(self._session.identity.id)
        if user is None:
            raise AuthError("User not found")
        if user["password"] == new_password:
            raise AuthError("New password should be different from the old password.",
                            "same_password")

        user["password"] = new_password
        await self._notify(AuthEventKind.USER_UPDATED, self._session)
        return self._session.identity

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        self._record("reset_password_for_email", email)
        self.sent_emails.append((email, redirect_to))

    async def set_recovery_session(self, access_token: str,
                                   refresh_token: str = "") -> Session:
        self._record("set_recovery_session")
        user_id = self._recovery_tokens.pop(access_token, None)
        if user_id is None or user_id not in self.users:
            raise AuthError("Invalid or expired token", "bad_jwt")

        self._session = self._new_session(self.users[user_id])
        await self._notify(AuthEventKind.PASSWORD_RECOVERY, self._session)
        return self._session

    # 数据行

    async def select(self, table: str, filters: Dict[str, Any],
                     order: Optional[str] = None, descending: bool = True) -> List[Row]:
        self._record("select", table)
        owner_id = self._require_access(False)
        rows = [dict(r) for r in self.tables[table] if self._visible(table, r, filters, owner_id)]
        if order:
            rows.sort(key=lambda r: r.get(order) or "", reverse=descending)
        return rows

    async def insert(self, table: str, row: Row) -> List[Row]:
        self._record("insert", table)
        owner_id = self._require_access(False)
        if str(row.get(self._owner_column(table))) != owner_id:
            raise AuthError("new row violates row-level security policy", "42501")

        stored = dict(row)
        stored.setdefault("id", str(uuid4()))
        stored.setdefault("created_at", self._now())
        stored.setdefault("updated_at", stored["created_at"])
        self.tables[table].append(stored)
        return [dict(stored)]

    async def update(self, table: str, values: Row, filters: Dict[str, Any]) -> List[Row]:
        self._record("update", table)
        owner_id = self._require_access(False)
        updated = []
        for row in self.tables[table]:
            if self._visible(table, row, filters, owner_id):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def upsert(self, table: str, row: Row, on_conflict: str = "id") -> List[Row]:
        self._record("upsert", table)
        owner_id = self._require_access(False)
        if str(row.get(self._owner_column(table))) != owner_id:
            raise AuthError("new row violates row-level security policy", "42501")

        for existing in self.tables[table]:
            if existing.get(on_conflict) == row.get(on_conflict):
                existing.update(row)
                return [dict(existing)]

        stored = dict(row)
        self.tables[table].append(stored)
        return [dict(stored)]

    async def delete(self, table: str, filters: Dict[str, Any],
                     privileged: bool = False) -> List[Row]:
        self._record("delete", table)
        owner_id = self._require_access(privileged)
        kept, removed = [], []
        for row in self.tables[table]:
            (removed if self._visible(table, row, filters, owner_id) else kept).append(row)
        self.tables[table] = kept
        return [dict(r) for r in removed]

    # 对象存储

    async def upload_object(self, bucket: str, path: str, data: bytes,
                            content_type: str = "application/octet-stream") -> str:
        self._record("upload_object", f"{bucket}/{path}")
        self._require_access(False)
        if (bucket, path) in self.objects:
            raise RemoteError("The resource already exists", "Duplicate")

        self.objects[(bucket, path)] = bytes(data)
        return self.public_url(bucket, path)

    async def delete_object(self, bucket: str, path: str, privileged: bool = False) -> None:
        self._record("delete_object", f"{bucket}/{path}")
        self._require_access(privileged)
        self.objects.pop((bucket, path), None)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    # 远程函数

    async def invoke_privileged(self, name: str,
                                params: Optional[Dict[str, Any]] = None) -> Any:
        self._record("invoke_privileged", name)
        params = params or {}

        if name != "delete_user":
            raise RemoteError(f"Could not find the function public.{name}", "PGRST202")

        user_id = params.get("user_id")
        if user_id not in self.users:
            raise RemoteError("User not found")

        del self.users[user_id]
        if self._session is not None and self._session.identity.id == user_id:
            self._session = None
        logger.info(f"用户已删除: {user_id}")
        return None
