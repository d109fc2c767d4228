import logging
from typing import Callable, Optional

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from site_deploy.services.routing_index import (
    RoutingConflict,
    RoutingIndex,
    RoutingIndexError,
    RoutingUnavailable,
    RoutingWriteStatus,
)

KVS_ARN = "arn:aws:cloudfront::123456789012:key-value-store/site-routes"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeKvsClient:
    """In-memory key value store with ETag versioning like CloudFront KVS."""

    def __init__(self) -> None:
        self.version = 1
        self.data: dict[str, str] = {}
        self.before_write: Optional[Callable[[], None]] = None
        self.writes = 0

    @property
    def etag(self) -> str:
        return f"ETAG{self.version}"

    def concurrent_put(self, key: str, value: str) -> None:
        self.data[key] = value
        self.version += 1

    def describe_key_value_store(self, KvsARN: str) -> dict:
        return {"ETag": self.etag, "KvsARN": KvsARN}

    def get_key(self, KvsARN: str, Key: str) -> dict:
        if Key not in self.data:
            raise _client_error("ResourceNotFoundException", "GetKey")
        return {"Key": Key, "Value": self.data[Key]}

    def _check(self, if_match: str, operation: str) -> None:
        self.writes += 1
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook()
        if if_match != self.etag:
            raise _client_error("ConflictException", operation)

    def put_key(self, KvsARN: str, Key: str, Value: str, IfMatch: str) -> dict:
        self._check(IfMatch, "PutKey")
        self.data[Key] = Value
        self.version += 1
        return {"ETag": self.etag}

    def delete_key(self, KvsARN: str, Key: str, IfMatch: str) -> dict:
        self._check(IfMatch, "DeleteKey")
        if Key not in self.data:
            raise _client_error("ResourceNotFoundException", "DeleteKey")
        del self.data[Key]
        self.version += 1
        return {"ETag": self.etag}


@pytest.fixture()
def kvs():
    return FakeKvsClient()


def test_set_and_get_round_trip(kvs):
    index = RoutingIndex(client=kvs, kvs_arn=KVS_ARN)

    result = index.set("acme-bakery", "tenant/t/site/s/deployments/d1")

    assert result.status == RoutingWriteStatus.updated
    assert result.version_token == kvs.etag
    entry = index.get("acme-bakery")
    assert entry.value == "tenant/t/site/s/deployments/d1"
    assert entry.version_token == kvs.etag
    assert index.get("unknown") is None


def test_set_retries_after_losing_a_race(kvs):
    index = RoutingIndex(client=kvs, kvs_arn=KVS_ARN, max_attempts=3)
    kvs.before_write = lambda: kvs.concurrent_put("acme-bakery", "prefix/other-writer")

    result = index.set("acme-bakery", "prefix/ours")

    assert result.status == RoutingWriteStatus.updated
    assert kvs.data["acme-bakery"] == "prefix/ours"
    assert kvs.writes == 2


def test_set_never_overwrites_a_concurrent_write_silently(kvs):
    index = RoutingIndex(client=kvs, kvs_arn=KVS_ARN, max_attempts=1)
    kvs.before_write = lambda: kvs.concurrent_put("acme-bakery", "prefix/other-writer")

    with pytest.raises(RoutingConflict):
        index.set("acme-bakery", "prefix/ours")

    assert kvs.data["acme-bakery"] == "prefix/other-writer"


def test_delete_is_idempotent(kvs):
    index = RoutingIndex(client=kvs, kvs_arn=KVS_ARN)
    kvs.concurrent_put("www.acme.test", "prefix/live")

    assert index.delete("www.acme.test").status == RoutingWriteStatus.deleted
    assert index.delete("www.acme.test").status == RoutingWriteStatus.already_absent
    assert "www.acme.test" not in kvs.data


def test_unconfigured_index_skips_writes(caplog):
    index = RoutingIndex(client=object(), kvs_arn="")

    with caplog.at_level(logging.WARNING):
        result = index.set("acme-bakery", "prefix/ours")

    assert index.enabled is False
    assert result.skipped is True
    assert index.delete("acme-bakery").status == RoutingWriteStatus.skipped
    assert any(record.getMessage() == "routing_index.skipped" for record in caplog.records)
    with pytest.raises(RoutingUnavailable):
        index.get("acme-bakery")


def test_unreachable_index_is_unavailable():
    class Unreachable:
        def describe_key_value_store(self, KvsARN):
            raise EndpointConnectionError(endpoint_url="https://kvs.example.test")

    with pytest.raises(RoutingUnavailable):
        RoutingIndex(client=Unreachable(), kvs_arn=KVS_ARN).set("acme-bakery", "prefix/ours")


def test_other_client_errors_are_wrapped(kvs):
    def _denied(**_kwargs):
        raise _client_error("AccessDeniedException", "PutKey")

    kvs.put_key = _denied
    with pytest.raises(RoutingIndexError) as excinfo:
        RoutingIndex(client=kvs, kvs_arn=KVS_ARN).set("acme-bakery", "prefix/ours")

    assert not isinstance(excinfo.value, RoutingConflict)
    assert isinstance(excinfo.value.__cause__, ClientError)


def test_delete_against_a_missing_store_is_unavailable_not_absent(kvs):
    def _no_store(KvsARN):
        raise _client_error("ResourceNotFoundException", "DescribeKeyValueStore")

    kvs.describe_key_value_store = _no_store

    with pytest.raises(RoutingUnavailable):
        RoutingIndex(client=kvs, kvs_arn=KVS_ARN).delete("www.acme.test")

    assert kvs.writes == 0
