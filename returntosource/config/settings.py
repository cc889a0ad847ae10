"""
Pydantic Settings Models for return-to-source Configuration
"""

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueueSettings(BaseSettings):
    """Error queue and requeue behaviour"""

    input_queue: Optional[str] = Field(
        default=None, description="Address of the error queue (queue@machine)"
    )
    clustered: bool = Field(
        default=False, description="Skip the transactional check for clustered queues"
    )
    receive_timeout_seconds: float = Field(
        default=5.0, gt=0, le=3600, description="Direct lookup timeout before scanning"
    )
    local_machine: str = Field(
        default="localhost", description="Machine used for addresses without one"
    )

    model_config = SettingsConfigDict(env_prefix="RTS_QUEUE_")


class RedisSettings(BaseSettings):
    """Redis queue server connection"""

    url_template: str = Field(
        default="redis://{machine}:6379/0",
        description=(
            "Server URL, {machine} is substituted. Every machine resolves to its own "
            "server, and a requeue cannot span two servers"
        ),
    )
    machine_urls: Dict[str, str] = Field(
        default_factory=dict,
        description=(
            "Explicit server URL per machine; point the error queue machine and the "
            "source queue machines at the same server to requeue between them"
        ),
    )
    key_prefix: str = Field(default="rts", min_length=1)
    socket_timeout_seconds: float = Field(default=10.0, gt=0, le=300)
    poll_interval_ms: int = Field(
        default=100, ge=10, le=60000, description="Polling interval while waiting for a message"
    )

    model_config = SettingsConfigDict(env_prefix="RTS_REDIS_")


class ObservabilitySettings(BaseSettings):
    """Logging, metrics and tracing configuration"""

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field(default="console", pattern="^(json|console)$")
    metrics_port: Optional[int] = Field(default=None, ge=1024, le=65535)
    enable_tracing: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="RTS_")


class ReturnToSourceSettings(BaseSettings):
    """Complete return-to-source configuration"""

    backend: str = Field(default="redis", pattern="^(redis|memory)$")
    queue: QueueSettings = Field(default_factory=QueueSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_prefix="RTS_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
