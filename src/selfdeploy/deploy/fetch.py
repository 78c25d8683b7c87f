"""Fetch packages from the package store to a local staging path."""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import httpx
import structlog

from selfdeploy.core.exceptions import FetchError


logger = structlog.get_logger()

CHUNK_SIZE = 64 * 1024


def _parse_s3_url(url: str) -> Tuple[str, str]:
    """Parse s3://bucket/key URL into (bucket, key)."""
    if not url.startswith("s3://"):
        raise ValueError("Not an s3 URL")
    rest = url[len("s3://"):]
    parts = rest.split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError("Invalid s3 URL; expected s3://bucket/key")
    return parts[0], parts[1]


def _discard(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


async def _download_https(
    client: httpx.AsyncClient, url: str, dest_path: Path, max_size_bytes: int
) -> int:
    tmp_file = dest_path.with_suffix(".downloading")
    bytes_written = 0
    async with client.stream("GET", url, follow_redirects=True) as resp:
        if not resp.is_success:
            raise FetchError(
                f"Package store returned HTTP {resp.status_code} {resp.reason_phrase}".rstrip(),
                code=str(resp.status_code),
            )
        try:
            async with aiofiles.open(tmp_file, "wb") as f:
                async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                    bytes_written += len(chunk)
                    if bytes_written > max_size_bytes:
                        raise FetchError("Package exceeds maximum allowed size", code="too_large")
                    await f.write(chunk)
        except BaseException:
            _discard(tmp_file)
            raise
    os.replace(tmp_file, dest_path)
    return bytes_written


def _timed_out(timeout_sec: float) -> FetchError:
    return FetchError(f"Download timed out after {timeout_sec:g}s", code="timeout")


def _download_s3(bucket: str, key: str, dest_path: Path, max_size_bytes: int, timeout_sec: float) -> int:
    """Blocking S3 download bounded by its own deadline."""
    import boto3
    from botocore.config import Config
    from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError

    deadline = time.monotonic() + timeout_sec
    tmp_file = dest_path.with_suffix(".downloading")
    bytes_written = 0
    try:
        s3 = boto3.client(
            "s3",
            config=Config(
                connect_timeout=timeout_sec,
                read_timeout=timeout_sec,
                retries={"total_max_attempts": 1},
            ),
        )
        obj = s3.get_object(Bucket=bucket, Key=key)
        body = obj["Body"]
        with open(tmp_file, "wb") as f:
            for chunk in body.iter_chunks(CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise _timed_out(timeout_sec)
                bytes_written += len(chunk)
                if bytes_written > max_size_bytes:
                    raise FetchError("Package exceeds maximum allowed size", code="too_large")
                f.write(chunk)
        if time.monotonic() > deadline:
            raise _timed_out(timeout_sec)
    except ClientError as exc:
        _discard(tmp_file)
        error = exc.response.get("Error", {})
        raise FetchError(
            f"Package store returned {error.get('Code', 'error')}: {error.get('Message', '')}".rstrip(": "),
            code=str(error.get("Code", "s3_error")),
        ) from exc
    except (ConnectTimeoutError, ReadTimeoutError) as exc:
        _discard(tmp_file)
        raise _timed_out(timeout_sec) from exc
    except BotoCoreError as exc:
        _discard(tmp_file)
        raise FetchError(f"Transport error: {exc}", code="transport") from exc
    except BaseException:
        _discard(tmp_file)
        raise
    os.replace(tmp_file, dest_path)
    return bytes_written


async def fetch_package_to_path(
    url: str,
    dest_path: Path,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout_sec: float = 60.0,
    max_size_bytes: int = 100 * 1024 * 1024,  # 100MB
) -> Path:
    """Stream a package to ``dest_path``.

    Supports:
    - http(s):// URLs via httpx streaming
    - s3://bucket/key via boto3 GetObject

    Makes exactly one attempt, bounded by ``timeout_sec``. Any non-2xx
    response, transport error, timeout or empty result raises FetchError.
    """
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        if url.startswith("s3://"):
            bucket, key = _parse_s3_url(url)
            logger.info("Downloading package from S3", bucket=bucket, key=key)
            loop = asyncio.get_running_loop()
            # Awaited to completion so no worker is left writing into staging
            bytes_written = await loop.run_in_executor(
                None, _download_s3, bucket, key, dest_path, max_size_bytes, timeout_sec
            )
        else:
            logger.info("Downloading package", url=url)
            if client is None:
                async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec)) as owned:
                    bytes_written = await asyncio.wait_for(
                        _download_https(owned, url, dest_path, max_size_bytes), timeout=timeout_sec
                    )
            else:
                bytes_written = await asyncio.wait_for(
                    _download_https(client, url, dest_path, max_size_bytes), timeout=timeout_sec
                )
    except FetchError:
        raise
    except ValueError as exc:
        raise FetchError(str(exc), code="bad_url") from exc
    except asyncio.TimeoutError as exc:
        raise _timed_out(timeout_sec) from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Transport error: {exc.__class__.__name__}: {exc}", code="transport") from exc

    if not dest_path.exists() or dest_path.stat().st_size == 0:
        raise FetchError("Downloaded package is empty", code="empty")

    logger.info("Package downloaded", bytes=bytes_written)
    return dest_path
