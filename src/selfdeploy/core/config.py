"""Configuration management for Selfdeploy."""

import os
import tempfile
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_ROOT = os.path.join(tempfile.gettempdir(), "selfdeploy")


class Settings(BaseSettings):
    """Server configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server configuration
    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(8000, description="Server port")

    # Deploy
    deploy_secret: Optional[str] = Field(
        None,
        description="Shared secret required by deploy requests; deploys are refused when unset",
    )
    package_store_url: Optional[str] = Field(
        None,
        description="Base URL of the package store (https:// or s3://bucket/prefix)",
    )
    initial_package: Optional[str] = Field(
        None,
        description="Package to deploy when the server starts",
    )
    content_dir_name: str = Field(
        "deploy-dist",
        description="Folder inside a package that holds the servable content",
    )

    # Storage
    dist_path: str = Field(
        os.path.join(_DEFAULT_ROOT, "dist"),
        description="Live serving directory",
    )
    staging_dir: str = Field(
        os.path.join(_DEFAULT_ROOT, "staging"),
        description="Root directory for downloads and extraction",
    )
    keep_staging: bool = Field(False, description="Keep staged archives after a deploy attempt")

    # Request routing
    trust_forwarded_proto: bool = Field(
        True,
        description="Accept X-Forwarded-Proto from a TLS-terminating proxy",
    )
    bypass_param: str = Field(
        "skipContent",
        description="Query flag that skips the content handler",
    )

    # Limits
    fetch_timeout_seconds: float = Field(60.0, description="Upper bound on one package download")
    max_package_size_mb: int = Field(100, description="Largest package accepted")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("json")
    metrics_enabled: bool = Field(True)

    @field_validator("package_store_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Normalize the store URL so package names can be appended."""
        if v:
            v = v.strip().rstrip("/")
        return v or None

    @property
    def max_package_size_bytes(self) -> int:
        return self.max_package_size_mb * 1024 * 1024
