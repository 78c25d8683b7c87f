"""Core data models for Selfdeploy."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field

from selfdeploy.core.exceptions import SelfDeployError


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_package_name(package_name: str) -> str:
    """Make a package name usable as a single path component."""
    return _UNSAFE_CHARS.sub("_", package_name) or "_"


class DeployStage(str, Enum):
    """Stages of a single deploy attempt."""

    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    SWAPPING = "swapping"
    PUBLISHED = "published"
    FAILED = "failed"


class DeployRequest(BaseModel):
    """Inbound deploy request, built from query parameters and transport metadata."""

    packageName: Optional[str] = None
    secret: Optional[str] = None
    isSecureChannel: bool = False


@dataclass(frozen=True)
class StagingLocation:
    """Where one package is downloaded and unpacked."""

    root: Path
    archive_path: Path
    extract_dir: Path

    @classmethod
    def for_package(cls, staging_dir: Path, package_name: str) -> "StagingLocation":
        name = sanitize_package_name(package_name)
        root = staging_dir / name
        # Sanitized names never contain ".", so the archive cannot collide with extract_dir
        return cls(root=root, archive_path=root / f"{name}.pkg", extract_dir=root / "extracted")


class DeploymentRecord(BaseModel):
    packageName: str
    clientTriggered: bool = False
    stage: DeployStage = DeployStage.IDLE
    createdAt: datetime = Field(default_factory=_utcnow)
    updatedAt: datetime = Field(default_factory=_utcnow)
    details: Dict[str, str] = Field(default_factory=dict)

    def update_stage(self, stage: DeployStage, details: Optional[Dict[str, str]] = None):
        self.stage = stage
        self.updatedAt = _utcnow()
        if details:
            self.details.update(details)


@dataclass(frozen=True)
class DeployOutcome:
    """Result of one deploy attempt: success, or failure carrying its error."""

    package_name: str
    error: Optional[SelfDeployError] = None
    record: Optional[DeploymentRecord] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, package_name: str, record: DeploymentRecord) -> "DeployOutcome":
        return cls(package_name=package_name, record=record)

    @classmethod
    def failure(
        cls,
        package_name: str,
        error: SelfDeployError,
        record: Optional[DeploymentRecord] = None,
    ) -> "DeployOutcome":
        return cls(package_name=package_name, error=error, record=record)


class RuntimeInfo(BaseModel):
    """Runtime information."""

    version: str = Field(..., description="Server version")
    start_time: datetime = Field(..., description="Server start time")
    deployed: bool = Field(..., description="Whether content is being served")
    package_name: Optional[str] = Field(None, description="Package currently served")
    deployed_at: Optional[datetime] = Field(None, description="When the served package was published")
    deploy_in_progress: bool = Field(False, description="Whether a deploy is running")
    last_deploy: Optional[DeploymentRecord] = Field(None, description="Most recent deploy attempt")
