"""Object storage for uploaded import files (local directory or S3)."""

from __future__ import annotations

import os
import re
import uuid

import boto3
from botocore.client import BaseClient
from botocore.exceptions import ClientError
from starlette.concurrency import run_in_threadpool

from formengine.core.config import settings


class StorageFileNotFoundError(FileNotFoundError):
    """No stored object exists for the given file id."""


def _normalize_endpoint(endpoint_url: str | None) -> str | None:
    if endpoint_url:
        return endpoint_url.rstrip("/")
    return None


def get_s3_client() -> BaseClient:
    """Return a configured S3 client (supports S3-compatible endpoints)."""
    return boto3.client(
        "s3",
        region_name=settings.S3_REGION or None,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        endpoint_url=_normalize_endpoint(settings.S3_ENDPOINT_URL),
    )


def _get_local_storage_path() -> str:
    path = settings.LOCAL_STORAGE_PATH
    os.makedirs(path, exist_ok=True)
    return path


def _local_path(file_id: str) -> str:
    root = os.path.realpath(_get_local_storage_path())
    path = os.path.realpath(os.path.join(root, file_id))
    if not path.startswith(root + os.sep):
        raise ValueError(f"Invalid file id: {file_id}")
    return path


def build_file_id(company_id: str, file_name: str) -> str:
    """Storage key for a new upload: ``imports/<company>/<uuid>/<safe name>``."""
    safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", os.path.basename(file_name)) or "upload"
    return f"imports/{company_id}/{uuid.uuid4()}/{safe_name}"


# =============================================================================
# File Operations
# =============================================================================


def store_file(file_id: str, content: bytes) -> None:
    if settings.STORAGE_BACKEND == "s3":
        get_s3_client().put_object(Bucket=settings.S3_BUCKET, Key=file_id, Body=content)
        return
    path = _local_path(file_id)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)


def load_file(file_id: str) -> bytes:
    if settings.STORAGE_BACKEND == "s3":
        try:
            response = get_s3_client().get_object(Bucket=settings.S3_BUCKET, Key=file_id)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in {"NoSuchKey", "404"}:
                raise StorageFileNotFoundError(file_id) from exc
            raise
        return response["Body"].read()
    path = _local_path(file_id)
    if not os.path.exists(path):
        raise StorageFileNotFoundError(file_id)
    with open(path, "rb") as f:
        return f.read()


def delete_file(file_id: str) -> None:
    if settings.STORAGE_BACKEND == "s3":
        get_s3_client().delete_object(Bucket=settings.S3_BUCKET, Key=file_id)
        return
    path = _local_path(file_id)
    if os.path.exists(path):
        os.remove(path)


# =============================================================================
# Async wrappers
# =============================================================================


async def store_file_async(file_id: str, content: bytes) -> None:
    await run_in_threadpool(store_file, file_id, content)


async def load_file_async(file_id: str) -> bytes:
    return await run_in_threadpool(load_file, file_id)


async def delete_file_async(file_id: str) -> None:
    await run_in_threadpool(delete_file, file_id)
