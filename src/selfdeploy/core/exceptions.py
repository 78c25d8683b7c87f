"""Custom exceptions for Selfdeploy."""

from typing import Optional


class SelfDeployError(Exception):
    """Base exception for all deploy errors."""

    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class FetchError(SelfDeployError):
    """Package could not be downloaded from the store."""

    status_code = 502


class ExtractError(SelfDeployError):
    """Package archive is missing, corrupt or unsafe."""
    pass


class SwapError(SelfDeployError):
    """Live directory could not be replaced."""
    pass


class AuthError(SelfDeployError):
    """Deploy request is not authorized."""

    status_code = 403


class ConcurrentDeployError(SelfDeployError):
    """Another deploy is already running."""

    status_code = 409
