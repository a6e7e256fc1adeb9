"""
Supabase 客户端
通过 REST 接口访问 Supabase 的认证、数据表、对象存储和远程函数
"""

import time
from typing import Any, Dict, List, Optional, Tuple
import httpx
from diary_app.backend.base import BackendClient, Row
from diary_app.models.auth import AuthEventKind, Identity, Session
from diary_app.utils.config import settings
from diary_app.utils.errors import AuthError, RemoteError
from diary_app.utils.logger import logger


class SupabaseClient(BackendClient):
    """Supabase REST 客户端，会话保存在内存中"""

    def __init__(self, url: Optional[str] = None, anon_key: Optional[str] = None,
                 service_role_key: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        初始化客户端

        Args:
            url: 项目地址，默认使用配置
            anon_key: 匿名访问密钥
            service_role_key: 服务端密钥，用于需要管理权限的调用
            timeout: 请求超时时间（秒）
            transport: 自定义传输层（测试时注入）
        """
        super().__init__()
        self.url = (url if url is not None else settings.supabase_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.supabase_anon_key
        self.service_role_key = (
            service_role_key if service_role_key is not None
            else settings.supabase_service_role_key
        )
        self._http = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport
        )
        self._session: Optional[Session] = None

    def is_configured(self) -> bool:
        """
        检查Supabase配置是否完整

        Returns:
            配置是否完整
        """
        return all([self.url, self.anon_key])

    # 请求辅助

    def _headers(self, privileged: bool = False,
                 extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        if privileged:
            if not self.service_role_key:
                raise AuthError("Service role key is not configured", "no_service_role_key")
            apikey = token = self.service_role_key
        else:
            apikey = self.anon_key
            token = self._session.access_token if self._session else self.anon_key

        headers = {"apikey": apikey, "Authorization": f"Bearer {token}"}
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _error_message(response: httpx.Response) -> Tuple[str, Optional[str]]:
        """从错误响应中提取可读消息和错误码"""
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}", None

        if not isinstance(payload, dict):
            return str(payload), None

        message = (
            payload.get("msg")
            or payload.get("error_description")
            or payload.get("message")
            or payload.get("error")
            or f"HTTP {response.status_code}"
        )
        code = payload.get("error_code") or payload.get("code")
        return str(message), str(code) if code is not None else None

    async def _request(self, method: str, path: str, *, privileged: bool = False,
                       auth_endpoint: bool = False,
                       headers: Optional[Dict[str, str]] = None, **kwargs) -> httpx.Response:
        """
        发送请求并把失败响应转换为业务异常

        Args:
            method: HTTP方法
            path: 相对路径
            privileged: 是否使用服务端密钥
            auth_endpoint: 是否为认证接口（4xx 视为凭证错误）
            headers: 额外的请求头

        Returns:
            成功的响应
        """
        # 非认证接口在发送前续期已过期的会话
        if not auth_endpoint and not privileged and self._session is not None \
                and self._session.is_expired(time.time()):
            if await self.get_session() is None:
                raise AuthError("Session expired, please sign in again.", "session_expired")

        try:
            response = await self._http.request(
                method, path, headers=self._headers(privileged, headers), **kwargs
            )
        except httpx.HTTPError as e:
            logger.error(f"后端请求异常: {method} {path}: {e}")
            raise RemoteError(f"Network error: {e}") from e

        if response.is_error:
            message, code = self._error_message(response)
            logger.error(f"后端请求失败: {method} {path} - {response.status_code} {message}")
            if response.status_code in (401, 403) or (auth_endpoint and response.status_code < 500):
                raise AuthError(message, code)
            raise RemoteError(message, code)

        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"后端返回了无法解析的响应: {response.request.method} {response.request.url.path}")
            raise RemoteError(f"Invalid response from backend: {response.text[:200]}") from e

    @staticmethod
    def _session_from_payload(payload: Any) -> Session:
        if not isinstance(payload, dict) or "access_token" not in payload or "user" not in payload:
            raise RemoteError("Invalid session payload from backend")
        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in"):
            expires_at = int(time.time()) + int(payload["expires_in"])
        return Session(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or "",
            expires_at=expires_at,
            identity=Identity.from_user(payload["user"])
        )

    @staticmethod
    def _identity_from_payload(payload: Any) -> Identity:
        if not isinstance(payload, dict) or "id" not in payload:
            raise RemoteError("Invalid user payload from backend")
        return Identity.from_user(payload)

    @staticmethod
    def _eq_filters(filters: Dict[str, Any]) -> Dict[str, str]:
        params = {}
        for column, value in filters.items():
            params[column] = "is.null" if value is None else f"eq.{value}"
        return params

    # 认证

    async def get_session(self) -> Optional[Session]:
        if self._session is None:
            return None

        if self._session.is_expired(time.time()) and self._session.refresh_token:
            try:
                return await self._refresh_session()
            except AuthError as e:
                logger.warning(f"刷新会话失败，视为已退出: {e.message}")
                self._session = None
                await self._notify(AuthEventKind.SIGNED_OUT, None)
                return None

        return self._session

    async def _refresh_session(self) -> Session:
        response = await self._request(
            "POST", "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self._session.refresh_token},
            auth_endpoint=True
        )
        self._session = self._session_from_payload(self._json(response))
        logger.info(f"会话已刷新: {self._session.identity.id}")
        await self._notify(AuthEventKind.TOKEN_REFRESHED, self._session)
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        response = await self._request(
            "POST", "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            auth_endpoint=True
        )
        self._session = self._session_from_payload(self._json(response))
        logger.info(f"登录成功: {self._session.identity.id}")
        await self._notify(AuthEventKind.SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email: str, password: str,
                      redirect_to: Optional[str] = None) -> Identity:
        params = {"redirect_to": redirect_to} if redirect_to else None
        response = await self._request(
            "POST", "/auth/v1/signup",
            params=params,
            json={"email": email, "password": password},
            auth_endpoint=True
        )
        payload = self._json(response) or {}

        # 关闭邮箱验证时直接返回会话
        if payload.get("access_token"):
            self._session = self._session_from_payload(payload)
            await self._notify(AuthEventKind.SIGNED_IN, self._session)
            return self._session.identity

        return self._identity_from_payload(payload.get("user") or payload)

    async def sign_out(self) -> None:
        if self._session is not None:
            try:
                await self._request("POST", "/auth/v1/logout", auth_endpoint=True)
            except AuthError as e:
                # 令牌已失效时本地照常退出
                logger.warning(f"服务端退出失败，清除本地会话: {e.message}")

        self._session = None
        await self._notify(AuthEventKind.SIGNED_OUT, None)

    async def update_password(self, new_password: str) -> Identity:
        if self._session is None:
            raise AuthError("Not authenticated")

        response = await self._request(
            "PUT", "/auth/v1/user",
            json={"password": new_password},
            auth_endpoint=True
        )
        identity = self._identity_from_payload(self._json(response))
        self._session = self._session.model_copy(update={"identity": identity})
        await self._notify(AuthEventKind.USER_UPDATED, self._session)
        return identity

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._request(
            "POST", "/auth/v1/recover",
            params={"redirect_to": redirect_to},
            json={"email": email},
            auth_endpoint=True
        )
        logger.info(f"重置密码邮件已发送: {email}")

    async def set_recovery_session(self, access_token: str,
                                   refresh_token: str = "") -> Session:
        response = await self._request(
            "GET", "/auth/v1/user",
            headers={"Authorization": f"Bearer {access_token}"},
            auth_endpoint=True
        )
        self._session = Session(
            access_token=access_token,
            refresh_token=refresh_token,
            identity=self._identity_from_payload(self._json(response))
        )
        await self._notify(AuthEventKind.PASSWORD_RECOVERY, self._session)
        return self._session

    # 数据行

    async def select(self, table: str, filters: Dict[str, Any],
                     order: Optional[str] = None, descending: bool = True) -> List[Row]:
        params = {"select": "*", **self._eq_filters(filters)}
        if order:
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"

        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return self._json(response) or []

    async def insert(self, table: str, row: Row) -> List[Row]:
        response = await self._request(
            "POST", f"/rest/v1/{table}",
            json=[row],
            headers={"Prefer": "return=representation"}
        )
        return self._json(response) or []

    async def update(self, table: str, values: Row, filters: Dict[str, Any]) -> List[Row]:
        response = await self._request(
            "PATCH", f"/rest/v1/{table}",
            params=self._eq_filters(filters),
            json=values,
            headers={"Prefer": "return=representation"}
        )
        return self._json(response) or []

    async def upsert(self, table: str, row: Row, on_conflict: str = "id") -> List[Row]:
        response = await self._request(
            "POST", f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=[row],
            headers={"Prefer": "resolution=merge-duplicates,return=representation"}
        )
        return self._json(response) or []

    async def delete(self, table: str, filters: Dict[str, Any],
                     privileged: bool = False) -> List[Row]:
        response = await self._request(
            "DELETE", f"/rest/v1/{table}",
            params=self._eq_filters(filters),
            headers={"Prefer": "return=representation"},
            privileged=privileged
        )
        return self._json(response) or []

    # 对象存储

    async def upload_object(self, bucket: str, path: str, data: bytes,
                            content_type: str = "application/octet-stream") -> str:
        await self._request(
            "POST", f"/storage/v1/object/{bucket}/{path}",
            content=data,
            headers={
                "Content-Type": content_type,
                "cache-control": "3600",
                "x-upsert": "false"
            }
        )
        logger.info(f"对象上传成功: {bucket}/{path}")
        return self.public_url(bucket, path)

    async def delete_object(self, bucket: str, path: str, privileged: bool = False) -> None:
        await self._request(
            "DELETE", f"/storage/v1/object/{bucket}",
            json={"prefixes": [path]},
            privileged=privileged
        )
        logger.info(f"对象删除成功: {bucket}/{path}")

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{path}"

    # 远程函数

    async def invoke_privileged(self, name: str,
                                params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._request(
            "POST", f"/rest/v1/rpc/{name}",
            json=params or {},
            privileged=True
        )
        return self._json(response)

    async def close(self) -> None:
        await self._http.aclose()
