"""Deploy endpoint: authorize the request, run the pipeline, report the result."""

from __future__ import annotations

import hmac
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from selfdeploy.core.exceptions import AuthError
from selfdeploy.core.models import DeployRequest
from selfdeploy.deploy.manager import DeploymentManager


router = APIRouter()
logger = structlog.get_logger()


def get_deploy_manager(request: Request) -> DeploymentManager:
    manager = getattr(request.app.state, "deployment_manager", None)
    if manager is None:
        raise RuntimeError("DeploymentManager not initialized")
    return manager


def is_secure_channel(request: Request, trust_forwarded_proto: bool) -> bool:
    """Whether the request reached us over TLS, directly or through a proxy."""
    if request.url.scheme == "https":
        return True
    if trust_forwarded_proto:
        forwarded = request.headers.get("x-forwarded-proto", "")
        return forwarded.split(",")[0].strip().lower() == "https"
    return False


def _authorize(deploy_request: DeployRequest, configured_secret: Optional[str]) -> None:
    if not deploy_request.isSecureChannel:
        raise AuthError("Deploy requests must be made over HTTPS", code="insecure_channel")
    if not configured_secret:
        raise AuthError("Deploys are disabled: no deploy secret is configured", code="not_configured")
    provided = (deploy_request.secret or "").encode()
    if not hmac.compare_digest(provided, configured_secret.encode()):
        raise AuthError("Invalid deploy secret", code="bad_secret")


class DeployCompleted(BaseModel):
    status: str
    packageName: str
    swapStrategy: Optional[str] = None


@router.api_route("/deploy", methods=["GET", "POST"], response_model=DeployCompleted)
async def deploy_endpoint(
    request: Request,
    pkgName: Optional[str] = Query(default=None),
    secret: Optional[str] = Query(default=None),
    manager: DeploymentManager = Depends(get_deploy_manager),
) -> DeployCompleted:
    deploy_request = DeployRequest(
        packageName=pkgName,
        secret=secret,
        isSecureChannel=is_secure_channel(request, manager.settings.trust_forwarded_proto),
    )

    try:
        _authorize(deploy_request, manager.settings.deploy_secret)
    except AuthError as exc:
        logger.warning("Deploy request rejected", reason=exc.code, package=pkgName)
        raise

    if not deploy_request.packageName:
        raise HTTPException(status_code=400, detail="pkgName query parameter is required")

    outcome = await manager.deploy(deploy_request.packageName, is_client_triggered=True)
    if not outcome.ok:
        raise outcome.error

    return DeployCompleted(
        status="deployed",
        packageName=outcome.package_name,
        swapStrategy=outcome.record.details.get("swapStrategy") if outcome.record else None,
    )
