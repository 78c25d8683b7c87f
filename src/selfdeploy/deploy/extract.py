"""Unpack package archives into a staging directory."""

from __future__ import annotations

import gzip
import lzma
import shutil
import tarfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath

import structlog

from selfdeploy.core.exceptions import ExtractError

logger = structlog.get_logger()


def _check_member_name(name: str) -> None:
    member_path = PurePosixPath(name.replace("\\", "/"))
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ExtractError(f"Archive contains unsafe path: {name}", code="path_traversal")


def _safe_extract_zip(zf: zipfile.ZipFile, dest_dir: Path) -> None:
    """Extract a zipfile to dest_dir, rejecting entries that escape it."""
    base = dest_dir.resolve()
    for member in zf.infolist():
        _check_member_name(member.filename)
        target = (base / member.filename).resolve()
        if not target.is_relative_to(base):
            raise ExtractError(f"Archive entry escapes destination: {member.filename}", code="path_traversal")
        if member.is_dir():
            target.mkdir(parents=True, exist_ok=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(member, "r") as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)


def _safe_extract_tar(tf: tarfile.TarFile, dest_dir: Path) -> None:
    """Extract a tarball to dest_dir, rejecting entries that escape it."""
    members = tf.getmembers()
    for member in members:
        _check_member_name(member.name)
    try:
        tf.extractall(dest_dir, members=members, filter="data")
    except tarfile.FilterError as exc:
        raise ExtractError(f"Archive contains unsafe entry: {exc}", code="path_traversal") from exc


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Unpack a tar (gz/bz2/xz) or zip archive into ``dest_dir``.

    The destination is created if absent. Raises ExtractError for missing,
    corrupt, unsupported or unsafe archives and for write failures.
    """
    if not archive_path.is_file():
        raise ExtractError("Package archive not found", code="missing")

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        if tarfile.is_tarfile(archive_path):
            logger.info("Extracting tar package", archive=archive_path.name)
            with tarfile.open(archive_path, "r:*") as tf:
                _safe_extract_tar(tf, dest_dir)
        elif zipfile.is_zipfile(archive_path):
            logger.info("Extracting zip package", archive=archive_path.name)
            with zipfile.ZipFile(archive_path, "r") as zf:
                _safe_extract_zip(zf, dest_dir)
        else:
            raise ExtractError("Unsupported or corrupt package archive", code="unsupported")
    except ExtractError:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, gzip.BadGzipFile, lzma.LZMAError, zlib.error, EOFError) as exc:
        raise ExtractError(f"Corrupt package archive: {exc}", code="corrupt") from exc
    except OSError as exc:
        raise ExtractError(f"Failed to write package contents: {exc.strerror or exc}", code="io") from exc

    return dest_dir
