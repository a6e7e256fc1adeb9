"""
会话状态服务
缓存当前登录的身份，订阅后端的认证事件并在身份变化时通知监听者
"""

import inspect
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional
from diary_app.backend.base import BackendClient
from diary_app.models.auth import AuthEvent, AuthEventKind, Identity, SignUpResult
from diary_app.utils.config import settings
from diary_app.utils.errors import AuthError, DiaryError, ValidationError
from diary_app.utils.logger import logger


IdentityListener = Callable[[Optional[Identity]], Any]

MIN_PASSWORD_LENGTH = 6


def validate_password(password: str, confirm_password: Optional[str] = None) -> None:
    """
    校验密码（在任何远程调用之前）

    Args:
        password: 密码
        confirm_password: 确认密码，为None时不比较
    """
    if confirm_password is not None and password != confirm_password:
        raise ValidationError("Passwords do not match.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password should be at least {MIN_PASSWORD_LENGTH} characters."
        )


class SessionStore:
    """会话状态服务"""

    def __init__(self, backend: BackendClient):
        """
        初始化会话状态

        Args:
            backend: 后端客户端
        """
        self.backend = backend
        self.identity: Optional[Identity] = None
        self.loading = True
        self.recovery_pending = False
        self._listeners: List[IdentityListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._suppressed = 0

    async def start(self) -> None:
        """检查一次现有会话，然后订阅认证事件"""
        try:
            session = await self.backend.get_session()
            self.identity = session.identity if session else None
        except DiaryError as e:
            logger.error(f"检查会话失败: {e.message}")
            self.identity = None
        finally:
            self.loading = False

        self._unsubscribe = self.backend.on_auth_state_change(self._handle_auth_event)
        logger.info(f"会话初始化完成，当前用户: {self.identity.id if self.identity else '无'}")

        if self.identity is not None:
            await self._notify_listeners()

    def close(self) -> None:
        """取消订阅并移除所有监听者"""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """
        监听身份变化

        Args:
            listener: 回调，参数为新的身份（可能为None）

        Returns:
            取消监听函数
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @contextmanager
    def suppress_events(self) -> Iterator[None]:
        """在此范围内忽略认证事件，缓存的身份保持不变"""
        self._suppressed += 1
        try:
            yield
        finally:
            self._suppressed -= 1

    async def clear(self) -> None:
        """清除缓存的身份"""
        await self._set_identity(None)

    def require_identity(self) -> Identity:
        """返回当前身份，未登录时抛出AuthError"""
        if self.identity is None:
            raise AuthError("Not authenticated")
        return self.identity

    async def _handle_auth_event(self, event: AuthEvent) -> None:
        if self._suppressed:
            logger.debug(f"忽略认证事件: {event.kind.value}")
            return

        if event.kind in (AuthEventKind.SIGNED_IN, AuthEventKind.USER_UPDATED):
            identity = event.identity
        elif event.kind == AuthEventKind.SIGNED_OUT:
            identity = None
        elif event.kind == AuthEventKind.PASSWORD_RECOVERY:
            # 会话仍然有效，但强制进入重置密码流程
            self.recovery_pending = True
            identity = None
        elif event.session is not None:
            identity = event.identity
        else:
            return

        await self._set_identity(identity)

    async def _set_identity(self, identity: Optional[Identity]) -> None:
        previous = self.identity
        self.identity = identity

        previous_id = previous.id if previous else None
        current_id = identity.id if identity else None
        if previous_id != current_id:
            await self._notify_listeners()

    async def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(self.identity)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"身份监听者执行失败: {e}")

    # 认证操作

    async def sign_up(self, email: str, password: str, confirm_password: str) -> SignUpResult:
        """
        注册

        Args:
            email: 邮箱
            password: 密码
            confirm_password: 确认密码

        Returns:
            注册结果及提示消息
        """
        validate_password(password, confirm_password)

        try:
            identity = await self.backend.sign_up(email, password, redirect_to=settings.site_url)
        except AuthError as e:
            if "already registered" in e.message:
                return SignUpResult(
                    identity=None,
                    message="This email is already registered. Please sign in instead."
                )
            raise

        logger.info(f"注册成功: {identity.id}")
        if identity.email_confirmed_at is None:
            return SignUpResult(
                identity=identity,
                message=(
                    "A verification email has been sent to your email address. "
                    "Please check your inbox and spam folder."
                )
            )
        return SignUpResult(identity=identity, message="Signup successful!")

    async def sign_in(self, email: str, password: str) -> Identity:
        session = await self.backend.sign_in_with_password(email, password)
        self.recovery_pending = False
        return session.identity

    async def sign_out(self) -> None:
        await self.backend.sign_out()

    async def update_password(self, new_password: str) -> None:
        self.require_identity()
        validate_password(new_password)
        await self.backend.update_password(new_password)
        logger.info(f"密码已更新: {self.identity.id if self.identity else ''}")

    async def request_password_reset(self, email: str) -> None:
        await self.backend.reset_password_for_email(
            email, redirect_to=f"{settings.site_url.rstrip('/')}/reset-password"
        )

    async def begin_password_recovery(self, access_token: str, refresh_token: str = "") -> None:
        """
        用重置密码链接中的令牌建立会话，进入重置密码流程

        Args:
            access_token: 链接中的访问令牌
            refresh_token: 链接中的刷新令牌
        """
        if not access_token:
            raise ValidationError("Missing recovery token.")
        await self.backend.set_recovery_session(access_token, refresh_token)

    async def complete_password_reset(self, new_password: str, confirm_password: str) -> None:
        """
        设置新密码，完成后退出登录以强制重新认证

        Args:
            new_password: 新密码
            confirm_password: 确认密码
        """
        validate_password(new_password, confirm_password)
        if not self.recovery_pending:
            raise AuthError("No password recovery in progress.")

        # 恢复期间身份保持为空
        with self.suppress_events():
            await self.backend.update_password(new_password)
            self.recovery_pending = False
            await self.backend.sign_out()
        logger.info("密码重置完成")
