"""
依赖装配
创建后端客户端和各服务实例，并通过 FastAPI 依赖注入到接口
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import Request
from diary_app.backend.base import BackendClient
from diary_app.backend.client import SupabaseClient
from diary_app.backend.memory import InMemoryBackend
from diary_app.services.account_service import AccountLifecycleCoordinator
from diary_app.services.entry_store import EntryStore
from diary_app.services.profile_service import ProfileService
from diary_app.services.session_store import SessionStore
from diary_app.utils.config import Settings, settings as default_settings
from diary_app.utils.logger import logger


@dataclass
class AppContainer:
    """应用持有的服务实例"""

    backend: BackendClient
    session_store: SessionStore
    entry_store: EntryStore
    profile_service: ProfileService
    account: AccountLifecycleCoordinator

    async def start(self) -> None:
        await self.session_store.start()

    async def close(self) -> None:
        self.entry_store.close()
        self.session_store.close()
        await self.backend.close()


def build_backend(settings: Settings) -> BackendClient:
    """
    根据配置选择后端实现

    Args:
        settings: 应用配置

    Returns:
        后端客户端
    """
    if settings.use_in_memory_backend:
        logger.warning("已启用内存后端，数据不会持久化")
        return InMemoryBackend()

    if not settings.supabase_url or not settings.supabase_anon_key:
        logger.error("Supabase配置不完整，请设置 SUPABASE_URL 和 SUPABASE_ANON_KEY")
        raise RuntimeError("Supabase is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY, "
                           "or USE_IN_MEMORY_BACKEND=true for local development.")

    return SupabaseClient(
        url=settings.supabase_url,
        anon_key=settings.supabase_anon_key,
        service_role_key=settings.supabase_service_role_key,
        timeout=settings.request_timeout
    )


def build_container(backend: Optional[BackendClient] = None,
                    settings: Optional[Settings] = None) -> AppContainer:
    """创建服务实例，服务之间通过构造参数连接"""
    backend = backend or build_backend(settings or default_settings)
    session_store = SessionStore(backend)
    entry_store = EntryStore(backend, session_store)
    return AppContainer(
        backend=backend,
        session_store=session_store,
        entry_store=entry_store,
        profile_service=ProfileService(backend, session_store),
        account=AccountLifecycleCoordinator(backend, session_store, entry_store)
    )


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def get_session_store(request: Request) -> SessionStore:
    return get_container(request).session_store


def get_entry_store(request: Request) -> EntryStore:
    return get_container(request).entry_store


def get_profile_service(request: Request) -> ProfileService:
    return get_container(request).profile_service


def get_account_coordinator(request: Request) -> AccountLifecycleCoordinator:
    return get_container(request).account
