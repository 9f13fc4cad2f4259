from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class S3Settings(BaseModel):
    object_size_limit_mib: float = Field(default=5, gt=0, description="Ceiling for S3 read/download/upload in MiB")

    model_config = ConfigDict(extra="allow")


class SQLSettings(BaseModel):
    connect_timeout_s: int = Field(default=5, gt=0)
    max_result_bytes: int = Field(default=20 * 1024 * 1024, gt=0)

    model_config = ConfigDict(extra="allow")


class HttpSettings(BaseModel):
    timeout_s: Optional[float] = Field(default=None, description="None keeps the httpx default")

    model_config = ConfigDict(extra="allow")


class AIAgentSettings(BaseModel):
    base_url: Optional[str] = None
    token: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class AuditSettings(BaseModel):
    enabled: bool = False

    model_config = ConfigDict(extra="allow")


class RuntimeConfig(BaseModel):
    s3: S3Settings = Field(default_factory=S3Settings)
    sql: SQLSettings = Field(default_factory=SQLSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    aiagent: AIAgentSettings = Field(default_factory=AIAgentSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)

    model_config = ConfigDict(extra="allow")


__all__ = [
    "S3Settings",
    "SQLSettings",
    "HttpSettings",
    "AIAgentSettings",
    "AuditSettings",
    "RuntimeConfig",
]
