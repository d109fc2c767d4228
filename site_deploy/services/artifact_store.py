from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from site_deploy.config import settings

logger = logging.getLogger(__name__)

# Deployment prefixes are never reused, so every object can be cached forever.
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
_DELETE_BATCH_SIZE = 1000
_DEPLOYMENT_PREFIX_LABELS = ("tenant", "business", "site", "deployments")
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
# Without s3:ListBucket, HEAD on a missing key answers 403 instead of 404.
_FORBIDDEN_CODES = {"403", "AccessDenied", "Forbidden"}


class ArtifactStoreConfigurationError(RuntimeError):
    pass


class ArtifactStoreError(RuntimeError):
    pass


def build_deployment_prefix(*, tenant_id: Any, business_id: Any, site_id: Any, deployment_id: Any) -> str:
    parts = {
        "tenant_id": tenant_id,
        "business_id": business_id,
        "site_id": site_id,
        "deployment_id": deployment_id,
    }
    for name, value in parts.items():
        text = str(value or "").strip()
        if not text or "/" in text:
            raise ValueError(f"{name} is required to build a deployment prefix and cannot contain '/'.")
    return (
        f"tenant/{tenant_id}/business/{business_id}/site/{site_id}/deployments/{deployment_id}"
    )


def parse_deployment_prefix(prefix: str) -> dict[str, str]:
    """
    Split a prefix built by `build_deployment_prefix` back into its ids.

    Anything that is not exactly one deployment's prefix (a tenant, business or site
    level prefix, extra trailing segments, relative segments) raises ValueError.
    """
    segments = (prefix or "").strip().strip("/").split("/")
    if len(segments) != 2 * len(_DEPLOYMENT_PREFIX_LABELS):
        raise ValueError(f"'{prefix}' is not a deployment prefix.")
    ids: dict[str, str] = {}
    for label, found_label, value in zip(_DEPLOYMENT_PREFIX_LABELS, segments[0::2], segments[1::2]):
        if found_label != label or not value.strip() or value in (".", ".."):
            raise ValueError(f"'{prefix}' is not a deployment prefix.")
        ids[label] = value
    return ids


def join_key(prefix: str, path: str) -> str:
    clean_path = (path or "").lstrip("/")
    segments = clean_path.split("/")
    if not clean_path or any(segment in ("", ".", "..") for segment in segments):
        raise ValueError(f"Invalid artifact path '{path}'.")
    return f"{prefix.rstrip('/')}/{clean_path}"


class ArtifactStore:
    """
    Thin wrapper around the S3 bucket that holds one immutable prefix per deployment.
    """

    def __init__(self, client: Any = None) -> None:
        if not settings.ARTIFACT_STORAGE_BUCKET:
            raise ArtifactStoreConfigurationError("ARTIFACT_STORAGE_BUCKET is required")

        self.bucket = settings.ARTIFACT_STORAGE_BUCKET
        self.presign_ttl = int(settings.ARTIFACT_STORAGE_PRESIGN_TTL_SECONDS or 900)
        self.min_prefix_length = int(settings.ARTIFACT_PREFIX_MIN_LENGTH or 10)

        if client is None:
            addressing_style = "path" if settings.ARTIFACT_STORAGE_FORCE_PATH_STYLE else "auto"
            timeout = float(settings.ARTIFACT_STORAGE_TIMEOUT_SECONDS or 20.0)
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=settings.ARTIFACT_STORAGE_ENDPOINT or None,
                aws_access_key_id=settings.ARTIFACT_STORAGE_ACCESS_KEY or None,
                aws_secret_access_key=settings.ARTIFACT_STORAGE_SECRET_KEY or None,
                region_name=settings.ARTIFACT_STORAGE_REGION or "us-east-1",
                config=Config(
                    s3={"addressing_style": addressing_style},
                    signature_version="s3v4",
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": int(settings.ARTIFACT_STORAGE_MAX_ATTEMPTS or 3), "mode": "standard"},
                ),
            )
        self.client = client

    def put(self, *, key: str, data: bytes, content_type: Optional[str]) -> str:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "CacheControl": IMMUTABLE_CACHE_CONTROL,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise ArtifactStoreError(f"Failed to upload '{key}': {exc}") from exc
        return key

    def exists(self, *, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code") if hasattr(exc, "response") else None
            if code in _NOT_FOUND_CODES:
                return False
            if code in _FORBIDDEN_CODES:
                logger.warning("artifact_store.probe_forbidden", extra={"key": key, "code": code})
                return False
            raise ArtifactStoreError(f"Failed to probe '{key}': {exc}") from exc
        except BotoCoreError as exc:
            raise ArtifactStoreError(f"Failed to probe '{key}': {exc}") from exc

    def list_under_prefix(self, *, prefix: str) -> list[str]:
        """Every key under `prefix/`, following continuation tokens until exhausted."""
        list_prefix = prefix.rstrip("/") + "/"
        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=list_prefix):
                for item in page.get("Contents") or []:
                    key = item.get("Key")
                    if key:
                        keys.append(key)
        except (ClientError, BotoCoreError) as exc:
            raise ArtifactStoreError(f"Failed to list '{list_prefix}': {exc}") from exc
        return keys

    def _validate_deletion_prefix(self, prefix: str) -> str:
        normalized = (prefix or "").strip().strip("/")
        if len(normalized) < self.min_prefix_length:
            raise ArtifactStoreError(f"Refusing to delete objects under invalid prefix '{prefix}'.")
        try:
            parse_deployment_prefix(normalized)
        except ValueError as exc:
            raise ArtifactStoreError(f"Refusing to delete objects under invalid prefix '{prefix}'.") from exc
        return normalized

    def delete_all_under_prefix(self, *, prefix: str) -> int:
        normalized = self._validate_deletion_prefix(prefix)
        keys = self.list_under_prefix(prefix=normalized)
        deleted = 0
        for start in range(0, len(keys), _DELETE_BATCH_SIZE):
            batch = keys[start : start + _DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                raise ArtifactStoreError(f"Failed to delete objects under '{normalized}': {exc}") from exc
            errors = response.get("Errors") or []
            if errors:
                first = errors[0]
                raise ArtifactStoreError(
                    f"Failed to delete {len(errors)} object(s) under '{normalized}' "
                    f"(first: {first.get('Key')}: {first.get('Code')})"
                )
            deleted += len(batch)
        logger.info("artifact_store.prefix_deleted", extra={"prefix": normalized, "deleted": deleted})
        return deleted

    def signed_read_url(self, *, key: str, expires_in: Optional[int] = None) -> str:
        ttl = int(expires_in or self.presign_ttl or 900)
        return self.client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl,
        )
