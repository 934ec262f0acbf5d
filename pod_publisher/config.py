from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration driven by environment variables."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    private_key: str = Field(alias="PRIVATE_KEY")
    rpc_url: Optional[str] = Field(None, alias="RPC_URL")

    acp_api_url: str = Field("https://acpx.virtuals.io/api", alias="ACP_API_URL")
    acp_api_key: Optional[str] = Field(None, alias="ACP_API_KEY")
    acp_entity_id: int = Field(alias="ACP_ENTITY_ID")
    acp_wallet_address: str = Field(alias="ACP_WALLET_ADDRESS")
    acp_page_size: int = Field(10, alias="ACP_PAGE_SIZE")

    reppo_api_url: str = Field(alias="REPPO_API_URL")
    reppo_agent_name: str = Field(alias="REPPO_AGENT_NAME")
    reppo_agent_description: str = Field(alias="REPPO_AGENT_DESCRIPTION")

    twitter_bearer_token: str = Field(alias="TWITTER_BEARER_TOKEN")
    twitter_api_url: str = Field("https://api.twitter.com/2", alias="TWITTER_API_URL")

    data_dir: Path = Field(Path("./data"), alias="DATA_DIR")
    poll_interval_seconds: float = Field(10.0, alias="POLL_INTERVAL_SECONDS")
    min_fare_usdc: float = Field(5.0, alias="MIN_FARE_USDC")
    dedup_max_entries: int = Field(10_000, alias="DEDUP_MAX_ENTRIES")
    recovery_abandon_hours: float = Field(24.0, alias="RECOVERY_ABANDON_HOURS")

    retry_attempts: int = Field(3, alias="RETRY_ATTEMPTS")
    retry_base_delay: float = Field(1.0, alias="RETRY_BASE_DELAY")
    lock_attempts: int = Field(3, alias="LOCK_ATTEMPTS")
    tx_receipt_timeout: float = Field(120.0, alias="TX_RECEIPT_TIMEOUT")

    health_host: str = Field("0.0.0.0", alias="HEALTH_HOST")
    health_port: int = Field(8080, alias="HEALTH_PORT")

    log_level: str = Field("info", alias="LOG_LEVEL")

    @field_validator("private_key", mode="after")
    @classmethod
    def _prefix_private_key(cls, value: str) -> str:
        return value if value.startswith("0x") else f"0x{value}"

    @property
    def dedup_path(self) -> Path:
        return self.data_dir / ".reppo-dedup.json"

    @property
    def worklog_path(self) -> Path:
        return self.data_dir / ".reppo-pending-jobs.json"

    @property
    def pods_path(self) -> Path:
        return self.data_dir / ".reppo-pods.json"

    @property
    def session_path(self) -> Path:
        return self.data_dir / ".reppo-session.json"

    @property
    def buyer_sessions_path(self) -> Path:
        return self.data_dir / ".reppo-buyer-sessions.json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
