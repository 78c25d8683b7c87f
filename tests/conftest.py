"""
Pytest configuration and fixtures for Selfdeploy tests.
"""

import io
import tarfile
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from selfdeploy.core.config import Settings

STORE_URL = "https://packages.example.com/builds"
DEPLOY_SECRET = "s3cret-value"


def tar_bytes(files: Dict[str, bytes], mode: str = "w:gz") -> bytes:
    """Build a tarball in memory from a {name: data} mapping."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def zip_bytes(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buf.getvalue()


def site_package(index: str, extra: Optional[Dict[str, bytes]] = None) -> bytes:
    """A package whose deploy-dist folder holds an index.html."""
    files = {"deploy-dist/index.html": index.encode()}
    files.update(extra or {})
    return tar_bytes(files)


class FakePackageStore:
    """In-memory package store served through httpx.MockTransport."""

    def __init__(self):
        self.packages: Dict[str, bytes] = {}
        self.status_overrides: Dict[str, int] = {}
        self.calls: List[str] = []

    def add(self, name: str, data: bytes) -> None:
        self.packages[name] = data

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        name = request.url.path.rsplit("/", 1)[-1]
        if name in self.status_overrides:
            return httpx.Response(self.status_overrides[name], text="store error")
        if name not in self.packages:
            return httpx.Response(404, text="no such key")
        return httpx.Response(200, content=self.packages[name])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def store() -> FakePackageStore:
    return FakePackageStore()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        dist_path=str(tmp_path / "dist"),
        staging_dir=str(tmp_path / "staging"),
        package_store_url=STORE_URL,
        deploy_secret=DEPLOY_SECRET,
        log_format="console",
    )
