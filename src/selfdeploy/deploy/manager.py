"""Deploy orchestrator: fetch, extract, swap and publish one package at a time."""

from __future__ import annotations

import asyncio
import functools
import inspect
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx
import structlog
from prometheus_client import Counter, Histogram
from structlog.contextvars import bound_contextvars

from selfdeploy.core.config import Settings
from selfdeploy.core.exceptions import (
    ConcurrentDeployError,
    FetchError,
    SelfDeployError,
)
from selfdeploy.core.models import (
    DeploymentRecord,
    DeployOutcome,
    DeployStage,
    StagingLocation,
)
from selfdeploy.deploy.extract import extract_archive
from selfdeploy.deploy.fetch import fetch_package_to_path
from selfdeploy.deploy.swap import swap_directory
from selfdeploy.serving.content import ContentServer
from selfdeploy.serving.state import ServingState

logger = structlog.get_logger()

DEPLOY_COUNT = Counter(
    "selfdeploy_deploys_total",
    "Deploy attempts by outcome",
    ["outcome"],
)

DEPLOY_DURATION = Histogram(
    "selfdeploy_deploy_duration_seconds",
    "Duration of deploy attempts that ran the pipeline",
)

PostDeployCallback = Callable[[bool], Any]


async def _remove_tree(path: Path) -> None:
    """Delete a staging tree in the default executor."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, functools.partial(shutil.rmtree, path, ignore_errors=True))


class DeploymentManager:
    """Runs the deploy pipeline and publishes new content handlers.

    At most one deploy runs at a time; a deploy requested while another is
    in flight is rejected with ConcurrentDeployError. ``deploy`` never
    raises: every failure comes back as a failed DeployOutcome and leaves
    the serving state as it was.
    """

    def __init__(
        self,
        settings: Settings,
        state: ServingState,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        post_deploy: Optional[PostDeployCallback] = None,
    ):
        self.settings = settings
        self.state = state
        self.staging_dir = Path(settings.staging_dir)
        self.http_client = http_client
        self.post_deploy = post_deploy

        self.last_record: Optional[DeploymentRecord] = None
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def package_url(self, package_name: str) -> str:
        base = self.settings.package_store_url
        if not base:
            raise FetchError("No package store URL configured", code="not_configured")
        return f"{base}/{quote(package_name, safe='/')}"

    async def startup(self) -> Optional[DeployOutcome]:
        """Run the configured initial deploy, if any."""
        package_name = self.settings.initial_package
        if not package_name:
            return None
        logger.info("Running initial deploy", package=package_name)
        return await self.deploy(package_name, is_client_triggered=False)

    async def deploy(self, package_name: str, is_client_triggered: bool = False) -> DeployOutcome:
        if self._lock.locked():
            logger.warning("Deploy rejected; another deploy is in progress", package=package_name)
            DEPLOY_COUNT.labels(outcome="rejected").inc()
            return DeployOutcome.failure(
                package_name,
                ConcurrentDeployError("A deploy is already in progress; retry later", code="in_progress"),
            )

        async with self._lock:
            record = DeploymentRecord(packageName=package_name, clientTriggered=is_client_triggered)
            self.last_record = record
            staging = StagingLocation.for_package(self.staging_dir, package_name)
            start = time.monotonic()

            with bound_contextvars(package=package_name):
                logger.info("Starting deploy", client_triggered=is_client_triggered)
                try:
                    handle = await self._run_pipeline(package_name, staging, record)
                except SelfDeployError as exc:
                    return self._failed(record, exc)
                except Exception as exc:
                    logger.exception("Unexpected deploy failure")
                    return self._failed(record, SelfDeployError(f"Unexpected deploy failure: {exc}"))
                finally:
                    DEPLOY_DURATION.observe(time.monotonic() - start)
                    if not self.settings.keep_staging:
                        await _remove_tree(staging.root)

                self.state.publish(handle)
                record.update_stage(DeployStage.PUBLISHED)
                DEPLOY_COUNT.labels(outcome="success").inc()
                await self._notify(is_client_triggered)
                return DeployOutcome.success(package_name, record)

    async def _run_pipeline(
        self, package_name: str, staging: StagingLocation, record: DeploymentRecord
    ) -> ContentServer:
        loop = asyncio.get_running_loop()

        await _remove_tree(staging.extract_dir)
        staging.root.mkdir(parents=True, exist_ok=True)

        # 1) Download
        record.update_stage(DeployStage.FETCHING)
        await fetch_package_to_path(
            self.package_url(package_name),
            staging.archive_path,
            client=self.http_client,
            timeout_sec=self.settings.fetch_timeout_seconds,
            max_size_bytes=self.settings.max_package_size_bytes,
        )

        # 2) Extract
        record.update_stage(DeployStage.EXTRACTING)
        logger.info("Extracting package")
        await loop.run_in_executor(None, extract_archive, staging.archive_path, staging.extract_dir)

        # 3) Swap
        record.update_stage(DeployStage.SWAPPING)
        deployed_at = datetime.now(timezone.utc)
        marker = {
            "package": package_name,
            "deployedAt": deployed_at.isoformat(),
            "clientTriggered": record.clientTriggered,
        }
        logger.info("Swapping content", content_dir=self.settings.content_dir_name)
        strategy = await loop.run_in_executor(
            None,
            lambda: swap_directory(
                staging.extract_dir,
                self.state.dist_path,
                content_dir_name=self.settings.content_dir_name,
                marker=marker,
            ),
        )
        record.details["swapStrategy"] = strategy.value

        # 4) Build the handler that will be published
        return ContentServer(root=self.state.dist_path, package_name=package_name, deployed_at=deployed_at)

    def _failed(self, record: DeploymentRecord, exc: SelfDeployError) -> DeployOutcome:
        logger.error(
            "Deploy failed",
            stage=record.stage.value,
            error_type=exc.__class__.__name__,
            error=str(exc),
        )
        record.update_stage(
            DeployStage.FAILED,
            {"error": str(exc), "error_type": exc.__class__.__name__, "failed_stage": record.stage.value},
        )
        DEPLOY_COUNT.labels(outcome="failure").inc()
        return DeployOutcome.failure(record.packageName, exc, record)

    async def _notify(self, is_client_triggered: bool) -> None:
        if self.post_deploy is None:
            return
        try:
            result = self.post_deploy(is_client_triggered)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Post-deploy callback failed")
