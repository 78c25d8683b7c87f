"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Depends

from selfdeploy import __version__
from selfdeploy.api.deploy import get_deploy_manager
from selfdeploy.core.models import RuntimeInfo
from selfdeploy.deploy.manager import DeploymentManager

router = APIRouter()

# Track start time
START_TIME = datetime.now(timezone.utc)


@router.get("/health", response_model=Dict[str, str])
async def health_check() -> Dict[str, str]:
    """Simple health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/info", response_model=RuntimeInfo)
async def runtime_info(manager: DeploymentManager = Depends(get_deploy_manager)) -> RuntimeInfo:
    """Report what is being served and how the last deploy went."""
    handle = manager.state.handle
    return RuntimeInfo(
        version=__version__,
        start_time=START_TIME,
        deployed=handle is not None,
        package_name=handle.package_name if handle else None,
        deployed_at=handle.deployed_at if handle else None,
        deploy_in_progress=manager.in_progress,
        last_deploy=manager.last_record,
    )
