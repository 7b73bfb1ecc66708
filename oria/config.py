"""
Oria 服务层的全局配置。

All values can be overridden with ``ORIA_``-prefixed environment variables
or a ``.env`` file in the working directory.
"""
from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class ServiceConfig(BaseSettings):
    """服务层配置。"""

    # Nexus node
    NEXUS_BASE_URL: str = "http://localhost:8080"
    NEXUS_API_KEY: Optional[str] = None
    NEXUS_TIMEOUT_SECONDS: float = 10.0
    NEXUS_CONNECT_TIMEOUT_SECONDS: float = 5.0

    # 数据库路径（":memory:" 用于测试）
    DB_PATH: str = "data/oria.db"

    # Platform wallet used to sponsor fees
    PLATFORM_USERNAME: Optional[str] = None
    PLATFORM_PASSWORD: Optional[str] = None
    PLATFORM_PIN: Optional[str] = None
    PLATFORM_ACCOUNT_NAME: str = "default"
    PLATFORM_SESSION_REFRESH_SECONDS: int = 30 * 60

    # Fee limits (NXS)
    FEE_MAX_PER_TX: Decimal = Decimal("0.01")
    FEE_DAILY_LIMIT: Decimal = Decimal("1.0")
    FEE_STANDARD_ESTIMATE: Decimal = Decimal("0.01")

    # Registration retry policy
    REGISTRATION_MAX_ATTEMPTS: int = 3
    REGISTRATION_RETRY_DELAY_SECONDS: float = 5.0
    MAX_MANUAL_RETRIES: int = 5

    # Ledger payload conventions
    ASSET_NAME_PREFIX: str = "oria"
    APP_TAG: str = "oria"
    BLANK_PLACEHOLDER: str = "-"

    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None

    class Config:
        env_file = ".env"
        env_prefix = "ORIA_"
        extra = "ignore"

    @property
    def platform_wallet_configured(self) -> bool:
        return bool(self.PLATFORM_USERNAME and self.PLATFORM_PASSWORD and self.PLATFORM_PIN)


# 全局配置实例
config = ServiceConfig()
