import asyncio
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from selfdeploy.core.exceptions import FetchError
from selfdeploy.deploy.fetch import _parse_s3_url, fetch_package_to_path


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_https_download_streams_to_dest(tmp_path: Path):
    dest = tmp_path / "staging" / "pkg"
    data = b"x" * (200 * 1024)

    async with _client(lambda request: httpx.Response(200, content=data)) as client:
        out = await fetch_package_to_path("https://example.com/pkg.tar.gz", dest, client=client)

    assert out == dest
    assert dest.read_bytes() == data
    assert not dest.with_suffix(".downloading").exists()


@pytest.mark.asyncio
async def test_server_error_captures_status(tmp_path: Path):
    dest = tmp_path / "pkg"

    async with _client(lambda request: httpx.Response(500)) as client:
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("https://example.com/pkg", dest, client=client)

    assert exc_info.value.code == "500"
    assert "500" in str(exc_info.value)
    assert not dest.exists()


@pytest.mark.asyncio
async def test_not_found_is_a_failure(tmp_path: Path):
    async with _client(lambda request: httpx.Response(404)) as client:
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("https://example.com/missing", tmp_path / "pkg", client=client)
    assert exc_info.value.code == "404"


@pytest.mark.asyncio
async def test_single_attempt_only(tmp_path: Path):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    async with _client(handler) as client:
        with pytest.raises(FetchError):
            await fetch_package_to_path("https://example.com/pkg", tmp_path / "pkg", client=client)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(tmp_path: Path):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("https://example.com/pkg", tmp_path / "pkg", client=client)
    assert exc_info.value.code == "transport"
    assert "ConnectError" in str(exc_info.value)


@pytest.mark.asyncio
async def test_empty_body_fails(tmp_path: Path):
    async with _client(lambda request: httpx.Response(200, content=b"")) as client:
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("https://example.com/pkg", tmp_path / "pkg", client=client)
    assert exc_info.value.code == "empty"


@pytest.mark.asyncio
async def test_size_limit(tmp_path: Path):
    dest = tmp_path / "pkg"
    async with _client(lambda request: httpx.Response(200, content=b"a" * 1024)) as client:
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("https://example.com/pkg", dest, client=client, max_size_bytes=10)
    assert exc_info.value.code == "too_large"
    assert not dest.exists()
    assert not dest.with_suffix(".downloading").exists()


@pytest.mark.asyncio
async def test_timeout(tmp_path: Path):
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, content=b"late")

    async with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("https://example.com/pkg", tmp_path / "pkg", client=client, timeout_sec=0.1)
    assert exc_info.value.code == "timeout"


def test_parse_s3_url():
    assert _parse_s3_url("s3://bucket/builds/site.tar.gz") == ("bucket", "builds/site.tar.gz")
    with pytest.raises(ValueError):
        _parse_s3_url("s3://bucket")
    with pytest.raises(ValueError):
        _parse_s3_url("https://bucket/key")


def _s3_client(chunks) -> MagicMock:
    body = MagicMock()
    body.iter_chunks.side_effect = lambda chunk_size: iter(chunks)
    s3 = MagicMock()
    s3.get_object.return_value = {"Body": body}
    return s3


@pytest.mark.asyncio
async def test_s3_download_streams_object(tmp_path: Path):
    dest = tmp_path / "staging" / "site.pkg"

    with patch("boto3.client") as bclient:
        s3 = _s3_client([b"abc", b"def"])
        bclient.return_value = s3
        out = await fetch_package_to_path("s3://builds/web/site.tar.gz", dest, timeout_sec=7)

    assert out == dest
    assert dest.read_bytes() == b"abcdef"
    assert not dest.with_suffix(".downloading").exists()
    s3.get_object.assert_called_once_with(Bucket="builds", Key="web/site.tar.gz")
    config = bclient.call_args.kwargs["config"]
    assert config.connect_timeout == 7
    assert config.read_timeout == 7


@pytest.mark.asyncio
async def test_s3_size_limit(tmp_path: Path):
    dest = tmp_path / "site.pkg"

    with patch("boto3.client") as bclient:
        bclient.return_value = _s3_client([b"a" * 8, b"b" * 8])
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("s3://builds/site.tar.gz", dest, max_size_bytes=10)

    assert exc_info.value.code == "too_large"
    assert not dest.exists()
    assert not dest.with_suffix(".downloading").exists()


@pytest.mark.asyncio
async def test_s3_missing_key(tmp_path: Path):
    with patch("boto3.client") as bclient:
        s3 = MagicMock()
        s3.get_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}}, "GetObject"
        )
        bclient.return_value = s3
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("s3://builds/missing.tar.gz", tmp_path / "site.pkg")

    assert exc_info.value.code == "NoSuchKey"
    assert "NoSuchKey" in str(exc_info.value)


@pytest.mark.asyncio
async def test_s3_connection_error(tmp_path: Path):
    with patch("boto3.client") as bclient:
        s3 = MagicMock()
        s3.get_object.side_effect = EndpointConnectionError(endpoint_url="https://builds.s3.amazonaws.com")
        bclient.return_value = s3
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("s3://builds/site.tar.gz", tmp_path / "site.pkg")

    assert exc_info.value.code == "transport"


@pytest.mark.asyncio
async def test_s3_read_timeout(tmp_path: Path):
    with patch("boto3.client") as bclient:
        s3 = MagicMock()
        s3.get_object.side_effect = ReadTimeoutError(endpoint_url="https://builds.s3.amazonaws.com")
        bclient.return_value = s3
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("s3://builds/site.tar.gz", tmp_path / "site.pkg")

    assert exc_info.value.code == "timeout"


@pytest.mark.asyncio
async def test_s3_deadline_stops_worker_before_returning(tmp_path: Path):
    dest = tmp_path / "site.pkg"

    def slow_chunks():
        yield b"first"
        time.sleep(0.2)
        yield b"second"

    with patch("boto3.client") as bclient:
        s3 = MagicMock()
        s3.get_object.return_value = {"Body": MagicMock(iter_chunks=lambda chunk_size: slow_chunks())}
        bclient.return_value = s3
        with pytest.raises(FetchError) as exc_info:
            await fetch_package_to_path("s3://builds/site.tar.gz", dest, timeout_sec=0.1)

    assert exc_info.value.code == "timeout"
    # The download thread has finished: nothing is left behind or written later
    assert not dest.exists()
    assert not dest.with_suffix(".downloading").exists()
