"""
认证事件通道
后端在会话变化时向订阅者广播带标签的事件
"""

import inspect
from typing import Callable, List, Any
from diary_app.models.auth import AuthEvent
from diary_app.utils.logger import logger


AuthCallback = Callable[[AuthEvent], Any]


class AuthEventChannel:
    """认证事件通道，订阅返回取消订阅函数"""

    def __init__(self):
        """初始化事件通道"""
        self._subscribers: List[AuthCallback] = []

    def subscribe(self, callback: AuthCallback) -> Callable[[], None]:
        """
        订阅认证事件

        Args:
            callback: 事件回调，可以是普通函数或协程函数

        Returns:
            取消订阅函数（重复调用无副作用）
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def emit(self, event: AuthEvent) -> None:
        """
        按订阅顺序依次派发事件

        Args:
            event: 认证事件
        """
        logger.info(f"认证事件: {event.kind.value}")
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"认证事件处理失败: {event.kind.value}: {e}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
