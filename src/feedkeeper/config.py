"""应用配置管理."""

from dataclasses import dataclass
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """应用配置（环境变量，前缀 FEEDKEEPER_）."""

    model_config = SettingsConfigDict(
        env_prefix="FEEDKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 存储
    database_url: str = "sqlite+aiosqlite:///./feedkeeper.db"

    # 订阅列表
    feed_list: list[str] = Field(default_factory=list)

    # 同步配置
    concurrency_limit: int = Field(default=8, ge=1)
    fetch_timeout_seconds: float = Field(default=15.0, gt=0)
    retry_count: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    max_payload_bytes: int = Field(default=5 * 1024 * 1024, gt=0)
    user_agent: str = DEFAULT_USER_AGENT

    # 定时任务
    sync_interval_minutes: int = Field(default=30, ge=1)
    sync_on_start: bool = True


@dataclass(frozen=True)
class SyncConfig:
    """同步引擎使用的配置子集，默认值即可直接运行."""

    concurrency_limit: int = 8
    fetch_timeout: float = 15.0
    retry_count: int = 2
    retry_backoff: float = 1.0
    max_payload_bytes: int = 5 * 1024 * 1024
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncConfig":
        return cls(
            concurrency_limit=settings.concurrency_limit,
            fetch_timeout=settings.fetch_timeout_seconds,
            retry_count=settings.retry_count,
            retry_backoff=settings.retry_backoff_seconds,
            max_payload_bytes=settings.max_payload_bytes,
            user_agent=settings.user_agent,
        )


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()
