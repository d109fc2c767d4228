import os
import threading
from typing import Optional

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ARTIFACT_STORAGE_BUCKET", "test-artifacts")
os.environ.setdefault("SITE_PUBLIC_BASE_DOMAIN", "sites.example.test")
os.environ.setdefault("SITE_PUBLIC_SCHEME", "https")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from site_deploy.db.base import Base
from site_deploy.db.deps import get_session
from site_deploy.db.enums import SiteDomainStatusEnum
from site_deploy.db.models import Business, Page, Site, SiteDomain, Tenant
from site_deploy.db.repositories.deployments import DeploymentsRepository
from site_deploy.dependencies import get_artifact_store, get_reclaimer, get_routing_index
from site_deploy.main import app
from site_deploy.services.routing_index import (
    RoutingConflict,
    RoutingIndexError,
    RoutingWriteResult,
    RoutingWriteStatus,
)


class FakeArtifactStore:
    def __init__(self, fail_paths: Optional[set[str]] = None, block: Optional[threading.Event] = None) -> None:
        self.objects: dict[str, tuple[bytes, Optional[str]]] = {}
        self.fail_paths = set(fail_paths or ())
        self.block = block
        self.deleted_prefixes: list[str] = []
        self.presign_ttl = 900
        self._lock = threading.Lock()

    def put(self, *, key: str, data: bytes, content_type: Optional[str]) -> str:
        if self.block is not None:
            self.block.wait(5)
        if any(key.endswith("/" + path) for path in self.fail_paths):
            raise RuntimeError(f"simulated upload failure for {key}")
        with self._lock:
            self.objects[key] = (data, content_type)
        return key

    def exists(self, *, key: str) -> bool:
        return key in self.objects

    def list_under_prefix(self, *, prefix: str) -> list[str]:
        base = prefix.rstrip("/") + "/"
        return [key for key in self.objects if key.startswith(base)]

    def delete_all_under_prefix(self, *, prefix: str) -> int:
        keys = self.list_under_prefix(prefix=prefix)
        with self._lock:
            for key in keys:
                self.objects.pop(key, None)
        self.deleted_prefixes.append(prefix)
        return len(keys)

    def signed_read_url(self, *, key: str, expires_in: Optional[int] = None) -> str:
        return f"https://signed.example.test/{key}?ttl={expires_in or self.presign_ttl}"


class FakeRoutingIndex:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.entries: dict[str, str] = {}
        self.fail_on: set[str] = set()
        self.conflict_on: set[str] = set()
        self.history: list[tuple[str, str, Optional[str]]] = []

    def set(self, key: str, value: str) -> RoutingWriteResult:
        if not self.enabled:
            return RoutingWriteResult(key=key, status=RoutingWriteStatus.skipped, value=value)
        if key in self.conflict_on:
            raise RoutingConflict(f"conflict on {key}")
        if key in self.fail_on:
            raise RoutingIndexError(f"simulated failure on {key}")
        self.entries[key] = value
        self.history.append(("set", key, value))
        return RoutingWriteResult(key=key, status=RoutingWriteStatus.updated, value=value, version_token="etag")

    def delete(self, key: str) -> RoutingWriteResult:
        if not self.enabled:
            return RoutingWriteResult(key=key, status=RoutingWriteStatus.skipped)
        if key in self.fail_on:
            raise RoutingIndexError(f"simulated failure on {key}")
        self.history.append(("delete", key, None))
        if self.entries.pop(key, None) is None:
            return RoutingWriteResult(key=key, status=RoutingWriteStatus.already_absent)
        return RoutingWriteResult(key=key, status=RoutingWriteStatus.deleted, version_token="etag")


class FakeReclaimer:
    """Records each enqueue together with whether the ledger still referenced the prefix."""

    def __init__(self, session=None, fail: bool = False) -> None:
        self.session = session
        self.fail = fail
        self.calls: list[dict] = []

    async def enqueue(self, *, site_id: str, deployment_id: str, artifact_prefix: str, reason=None) -> str:
        if self.fail:
            raise RuntimeError("temporal unavailable")
        referenced = None
        if self.session is not None:
            referenced = DeploymentsRepository(self.session).prefix_is_referenced(artifact_prefix=artifact_prefix)
        self.calls.append(
            {
                "site_id": site_id,
                "deployment_id": deployment_id,
                "artifact_prefix": artifact_prefix,
                "referenced_at_enqueue": referenced,
            }
        )
        return f"reclaim-deployment-{deployment_id}"


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(bind=db_engine, autocommit=False, autoflush=False, future=True)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def storage():
    return FakeArtifactStore()


@pytest.fixture()
def routing():
    return FakeRoutingIndex()


@pytest.fixture()
def reclaimer(db_session):
    return FakeReclaimer(session=db_session)


def _home_content(title: str = "Welcome") -> dict:
    return {
        "blocks": [
            {"type": "Heading", "props": {"text": title, "level": 1}},
            {"type": "Text", "props": {"text": "Fresh bread every morning."}},
            {"type": "Button", "props": {"label": "Order", "href": "/order/"}},
        ],
        "css": "h1{color:#333}",
        "js": "console.log('home')",
    }


@pytest.fixture()
def site_factory(db_session):
    def _create(slug: str = "acme-bakery", *, domains: Optional[list[tuple[str, SiteDomainStatusEnum]]] = None) -> Site:
        tenant = Tenant(name=f"Tenant {slug}")
        db_session.add(tenant)
        db_session.flush()
        business = Business(tenant_id=tenant.id, name=f"Business {slug}")
        db_session.add(business)
        db_session.flush()
        site = Site(tenant_id=tenant.id, business_id=business.id, name="Acme Bakery", slug=slug)
        db_session.add(site)
        db_session.flush()
        db_session.add_all(
            [
                Page(
                    site_id=site.id,
                    title="Home",
                    slug="home",
                    ordering=0,
                    is_home=True,
                    is_published=True,
                    content=_home_content(),
                ),
                Page(
                    site_id=site.id,
                    title="About",
                    slug="about",
                    ordering=1,
                    is_published=True,
                    content={"blocks": [{"type": "Text", "props": {"text": "Since 1999."}}]},
                ),
                Page(
                    site_id=site.id,
                    title="Draft",
                    slug="draft",
                    ordering=2,
                    is_published=False,
                    content={"blocks": [{"type": "Mystery"}]},
                ),
            ]
        )
        for hostname, domain_status in domains or []:
            db_session.add(SiteDomain(site_id=site.id, hostname=hostname, status=domain_status))
        db_session.commit()
        db_session.refresh(site)
        return site

    return _create


@pytest.fixture()
def api_client(db_session, storage, routing, reclaimer):
    def get_session_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_artifact_store] = lambda: storage
    app.dependency_overrides[get_routing_index] = lambda: routing
    app.dependency_overrides[get_reclaimer] = lambda: reclaimer
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()