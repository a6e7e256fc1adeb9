"""
错误类型模块
定义应用中所有业务异常，统一携带可展示给用户的消息
"""

from typing import Optional


class DiaryError(Exception):
    """应用异常基类"""

    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        """
        初始化异常

        Args:
            message: 可读的错误消息
            code: 后端返回的错误码（如有）
        """
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(DiaryError):
    """客户端校验失败，未发起任何远程调用"""
    status_code = 400


class AuthError(DiaryError):
    """凭证被拒绝、会话缺失或过期"""
    status_code = 401


class NotFoundError(DiaryError):
    """资源不存在或不属于当前用户"""
    status_code = 404


class ConflictError(DiaryError):
    """同一资源已有操作在进行中"""
    status_code = 409


class RemoteError(DiaryError):
    """后端查询或变更失败"""
    status_code = 502
