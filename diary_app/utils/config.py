"""
配置管理模块
管理应用的所有配置信息，包括Supabase配置、服务器配置、日志配置等
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """应用配置类"""

    # Supabase 配置
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    request_timeout: float = 10.0

    # 开发/测试时使用内存后端
    use_in_memory_backend: bool = False

    # 数据表与存储桶
    entries_table: str = "diary_entries"
    profiles_table: str = "profiles"
    avatar_bucket: str = "avatars"
    delete_user_function: str = "delete_user"

    # 站点地址（邮件验证与重置密码的跳转地址）
    site_url: str = "http://localhost:8000"

    # 服务器配置
    host: str = "0.0.0.0"
    port: int = 8000

    # 日志配置
    log_level: str = "INFO"
    log_file: str = "logs/app.log"

    # 应用配置
    app_name: str = "Diary"
    app_version: str = "1.0.0"
    debug: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    获取配置实例（单例模式）
    使用lru_cache确保只创建一个配置实例
    """
    return Settings()


# 导出配置实例
settings = get_settings()
