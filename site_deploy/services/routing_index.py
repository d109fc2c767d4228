from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from site_deploy.config import settings
from site_deploy.services.errors import DeploymentError

logger = logging.getLogger(__name__)

_CONFLICT_CODES = {"ConflictException", "PreconditionFailed", "PreconditionFailedException"}
_NOT_FOUND_CODES = {"ResourceNotFoundException", "NotFound", "404"}


class RoutingIndexError(DeploymentError):
    code = "routing_index_error"


class RoutingConflict(RoutingIndexError):
    """A concurrent writer changed the store between our read and our conditional write."""

    code = "routing_conflict"


class RoutingUnavailable(RoutingIndexError):
    code = "routing_unavailable"


class RoutingWriteStatus(str, Enum):
    updated = "updated"
    deleted = "deleted"
    already_absent = "already_absent"
    skipped = "skipped"


@dataclass(frozen=True)
class RoutingEntry:
    key: str
    value: str
    version_token: str


@dataclass(frozen=True)
class RoutingWriteResult:
    key: str
    status: RoutingWriteStatus
    value: Optional[str] = None
    version_token: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.status == RoutingWriteStatus.skipped


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "") if hasattr(exc, "response") else ""


class RoutingIndex:
    """
    Client for the CloudFront KeyValueStore the edge function reads on every request.

    key = routable name (site slug or custom domain), value = artifact prefix.
    Every write is a compare-and-swap: read the store ETag, then write with IfMatch.
    When `ROUTING_KVS_ARN` is unset the client reports writes as skipped instead of failing.
    """

    def __init__(self, client: Any = None, *, kvs_arn: Optional[str] = None, max_attempts: Optional[int] = None) -> None:
        self.kvs_arn = (kvs_arn if kvs_arn is not None else settings.ROUTING_KVS_ARN) or None
        self.max_attempts = max(1, int(max_attempts or settings.ROUTING_CAS_MAX_ATTEMPTS or 1))
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.kvs_arn)

    @property
    def client(self) -> Any:
        if self._client is None:
            timeout = float(settings.ROUTING_TIMEOUT_SECONDS or 10.0)
            session = boto3.session.Session()
            # KVS requests are SigV4A-signed; boto3 needs the CRT extra installed for that.
            self._client = session.client(
                "cloudfront-keyvaluestore",
                region_name=settings.ROUTING_REGION or "us-east-1",
                config=Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )
        return self._client

    def _require_enabled(self) -> str:
        if not self.kvs_arn:
            raise RoutingUnavailable("Routing index is not configured (ROUTING_KVS_ARN is unset).")
        return self.kvs_arn

    def _current_etag(self) -> str:
        kvs_arn = self._require_enabled()
        try:
            described = self.client.describe_key_value_store(KvsARN=kvs_arn)
        except ClientError as exc:
            raise RoutingUnavailable(f"Unable to read routing index version: {exc}") from exc
        except BotoCoreError as exc:
            raise RoutingUnavailable(f"Unable to reach routing index: {exc}") from exc
        etag = described.get("ETag")
        if not etag:
            raise RoutingUnavailable("Routing index did not return a version token.")
        return etag

    def get(self, key: str) -> Optional[RoutingEntry]:
        kvs_arn = self._require_enabled()
        etag = self._current_etag()
        try:
            response = self.client.get_key(KvsARN=kvs_arn, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise RoutingIndexError(f"Failed to read routing key '{key}': {exc}") from exc
        except BotoCoreError as exc:
            raise RoutingUnavailable(f"Unable to reach routing index: {exc}") from exc
        return RoutingEntry(key=key, value=str(response.get("Value") or ""), version_token=etag)

    def set(self, key: str, value: str) -> RoutingWriteResult:
        if not self.enabled:
            logger.warning("routing_index.skipped", extra={"operation": "set", "key": key})
            return RoutingWriteResult(key=key, status=RoutingWriteStatus.skipped, value=value)

        kvs_arn = self._require_enabled()
        for attempt in range(1, self.max_attempts + 1):
            etag = self._current_etag()
            try:
                response = self.client.put_key(KvsARN=kvs_arn, Key=key, Value=value, IfMatch=etag)
            except ClientError as exc:
                if _error_code(exc) in _CONFLICT_CODES:
                    logger.info(
                        "routing_index.conflict",
                        extra={"operation": "set", "key": key, "attempt": attempt},
                    )
                    continue
                raise RoutingIndexError(f"Failed to write routing key '{key}': {exc}") from exc
            except BotoCoreError as exc:
                raise RoutingUnavailable(f"Unable to reach routing index: {exc}") from exc
            logger.info("routing_index.updated", extra={"key": key, "value": value})
            return RoutingWriteResult(
                key=key, status=RoutingWriteStatus.updated, value=value, version_token=response.get("ETag")
            )
        raise RoutingConflict(
            f"Routing key '{key}' lost {self.max_attempts} compare-and-swap attempt(s) to concurrent writers."
        )

    def delete(self, key: str) -> RoutingWriteResult:
        if not self.enabled:
            logger.warning("routing_index.skipped", extra={"operation": "delete", "key": key})
            return RoutingWriteResult(key=key, status=RoutingWriteStatus.skipped)

        kvs_arn = self._require_enabled()
        for attempt in range(1, self.max_attempts + 1):
            etag = self._current_etag()
            try:
                response = self.client.delete_key(KvsARN=kvs_arn, Key=key, IfMatch=etag)
            except ClientError as exc:
                code = _error_code(exc)
                if code in _NOT_FOUND_CODES:
                    logger.info("routing_index.already_absent", extra={"key": key})
                    return RoutingWriteResult(key=key, status=RoutingWriteStatus.already_absent)
                if code in _CONFLICT_CODES:
                    logger.info(
                        "routing_index.conflict",
                        extra={"operation": "delete", "key": key, "attempt": attempt},
                    )
                    continue
                raise RoutingIndexError(f"Failed to delete routing key '{key}': {exc}") from exc
            except BotoCoreError as exc:
                raise RoutingUnavailable(f"Unable to reach routing index: {exc}") from exc
            logger.info("routing_index.deleted", extra={"key": key})
            return RoutingWriteResult(
                key=key, status=RoutingWriteStatus.deleted, version_token=response.get("ETag")
            )
        raise RoutingConflict(
            f"Routing key '{key}' lost {self.max_attempts} compare-and-swap attempt(s) to concurrent writers."
        )
