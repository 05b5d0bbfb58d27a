from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WarpcastSettings(BaseModel):
    api_key: str
    base_url: str = "https://api.warpcast.com"
    timeout_seconds: float = 10.0


class NeynarSettings(BaseModel):
    api_key: str = ""
    signer_uuid: str = ""
    base_url: str = "https://api.neynar.com"
    timeout_seconds: float = 10.0


class ChainSettings(BaseModel):
    rpc_urls: dict[str, str] = Field(
        default_factory=dict,
        description="JSON-RPC endpoint per chain id, e.g. {'1': 'https://...', '8453': 'https://...'}",
    )
    timeout_seconds: float = Field(default=5.0, gt=0)


class EvaluationSettings(BaseModel):
    check_timeout_seconds: float = Field(default=5.0, gt=0)
    event_dedupe_ttl_seconds: int = Field(default=3600, ge=1)


class CooldownSettings(BaseModel):
    default_duration_hours: float = Field(default=24.0, gt=0)


class WorkerSettings(BaseModel):
    concurrency: int = Field(default=8, ge=1)
    queue_size: int = Field(default=1000, ge=0)


class StorageSettings(BaseModel):
    sqlite_path: str = "automod.db"
    redis_url: Optional[str] = Field(default=None, description="TTL cache; in-memory when unset.")


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")
    use_json: bool = Field(default=False, description="Use JSON format instead of console output")


class AutomodSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AUTOMOD_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    webhook_secret: str = Field(default="", description="Sent to rule webhooks as x-webhook-secret.")
    warpcast: WarpcastSettings
    neynar: NeynarSettings = NeynarSettings()
    chain: ChainSettings = ChainSettings()
    evaluation: EvaluationSettings = EvaluationSettings()
    cooldown: CooldownSettings = CooldownSettings()
    worker: WorkerSettings = WorkerSettings()
    storage: StorageSettings = StorageSettings()
    logging: LoggingSettings = LoggingSettings()
