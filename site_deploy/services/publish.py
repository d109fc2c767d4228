from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from site_deploy.config import settings
from site_deploy.db.enums import DeploymentRoutingStatusEnum
from site_deploy.db.models import Deployment
from site_deploy.db.repositories.deployments import ContentSnapshotsRepository, DeploymentsRepository
from site_deploy.db.repositories.sites import PagesRepository, SitesRepository
from site_deploy.services.artifact_store import ArtifactStore, build_deployment_prefix, join_key
from site_deploy.services.errors import LedgerInconsistency, SiteNotFound, UploadError
from site_deploy.services.routing_index import RoutingIndex, RoutingIndexError, RoutingWriteResult
from site_deploy.services.site_compiler import PageCompiler, SiteFile, build_site_files, render_page, snapshot_content

logger = logging.getLogger(__name__)


def build_live_url(slug: str) -> str:
    return f"{settings.SITE_PUBLIC_SCHEME}://{slug}.{settings.SITE_PUBLIC_BASE_DOMAIN}"


@dataclass
class RoutingUpdateReport:
    status: DeploymentRoutingStatusEnum
    results: list[RoutingWriteResult] = field(default_factory=list)
    failed_names: list[str] = field(default_factory=list)

    @property
    def any_updated(self) -> bool:
        return any(not result.skipped for result in self.results)


@dataclass(frozen=True)
class PublishResult:
    deployment_id: str
    artifact_prefix: str
    routing_status: DeploymentRoutingStatusEnum
    live_url: Optional[str]
    content_snapshot_id: str
    version_number: int
    message: str

    @property
    def routing_updated(self) -> bool:
        return self.routing_status == DeploymentRoutingStatusEnum.succeeded


def upload_site_files(
    storage: ArtifactStore,
    *,
    prefix: str,
    files: list[SiteFile],
    concurrency: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
) -> list[str]:
    """
    Upload every file under `prefix` concurrently and join on all of them.

    Returns only once every upload finished; any failure or an overrun of the join
    timeout raises UploadError and the remaining uploads are cancelled.
    """
    workers = max(1, int(concurrency or settings.PUBLISH_UPLOAD_CONCURRENCY or 1))
    timeout = float(timeout_seconds or settings.PUBLISH_UPLOAD_TIMEOUT_SECONDS)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="publish-upload")
    try:
        futures = {
            executor.submit(
                storage.put, key=join_key(prefix, item.path), data=item.content, content_type=item.content_type
            ): item.path
            for item in files
        }
        done, not_done = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)
        for future in done:
            exc = future.exception()
            if exc is not None:
                raise UploadError(f"Upload of '{futures[future]}' failed: {exc}") from exc
        if not_done:
            raise UploadError(
                f"Upload timed out after {timeout:.0f}s with {len(not_done)} of {len(files)} file(s) pending."
            )
        return [future.result() for future in futures]
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def update_routing_best_effort(routing: RoutingIndex, *, names: list[str], prefix: str) -> RoutingUpdateReport:
    """Point every name at `prefix`; failures are collected, not raised."""
    report = RoutingUpdateReport(status=DeploymentRoutingStatusEnum.succeeded)
    for name in names:
        try:
            report.results.append(routing.set(name, prefix))
        except RoutingIndexError as exc:
            logger.warning(
                "routing.name_failed",
                extra={"routable_name": name, "prefix": prefix, "error": str(exc), "code": exc.code},
            )
            report.failed_names.append(name)
    if report.failed_names:
        report.status = DeploymentRoutingStatusEnum.failed
    elif not report.any_updated:
        report.status = DeploymentRoutingStatusEnum.not_attempted
    return report


class SitePublisher:
    def __init__(
        self,
        session: Session,
        *,
        storage: ArtifactStore,
        routing: RoutingIndex,
        compiler: PageCompiler = render_page,
    ) -> None:
        self.session = session
        self.storage = storage
        self.routing = routing
        self.compiler = compiler
        self.sites = SitesRepository(session)
        self.pages = PagesRepository(session)
        self.snapshots = ContentSnapshotsRepository(session)
        self.ledger = DeploymentsRepository(session)

    def publish(
        self,
        *,
        site_id: str | UUID,
        deployment_name: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PublishResult:
        site = self.sites.get(site_id=site_id)
        if not site:
            raise SiteNotFound("Site not found")
        site_uuid, site_slug = site.id, site.slug

        pages = self.pages.list_publishable(site_id=site_uuid)
        files = build_site_files(site, pages, self.compiler)
        logger.info("publish.compiled", extra={"site_id": str(site_uuid), "files": len(files)})

        snapshot = self.snapshots.create_next(
            site_id=site_uuid, content=snapshot_content(site, pages), created_by=created_by
        )
        snapshot_id, version_number = snapshot.id, snapshot.version_number

        deployment_id = uuid4()
        prefix = build_deployment_prefix(
            tenant_id=site.tenant_id,
            business_id=site.business_id,
            site_id=site_uuid,
            deployment_id=deployment_id,
        )

        # Nothing below may touch routing or the ledger until every file exists.
        try:
            upload_site_files(self.storage, prefix=prefix, files=files)
        except UploadError:
            logger.exception(
                "publish.upload_failed",
                extra={"site_id": str(site_uuid), "deployment_id": str(deployment_id), "prefix": prefix},
            )
            raise
        logger.info(
            "publish.uploaded",
            extra={"site_id": str(site_uuid), "deployment_id": str(deployment_id), "prefix": prefix},
        )

        names = self.sites.routable_names(site=site)
        report = update_routing_best_effort(self.routing, names=names, prefix=prefix)
        logger.info(
            "publish.routed",
            extra={
                "site_id": str(site_uuid),
                "deployment_id": str(deployment_id),
                "routing_status": report.status.value,
                "failed_names": report.failed_names,
            },
        )

        deployment = Deployment(
            id=deployment_id,
            site_id=site_uuid,
            content_snapshot_id=snapshot_id,
            deployment_name=(deployment_name or "").strip() or None,
            artifact_prefix=prefix,
            routing_status=report.status,
            created_by=created_by,
        )
        try:
            self.ledger.activate_new(deployment=deployment)
        except Exception as exc:
            if report.any_updated:
                logger.critical(
                    "publish.ledger_inconsistency",
                    extra={
                        "site_id": str(site_uuid),
                        "deployment_id": str(deployment_id),
                        "prefix": prefix,
                        "routed_names": [r.key for r in report.results if not r.skipped],
                        "error": str(exc),
                    },
                )
                raise LedgerInconsistency(
                    "Traffic was routed to the new deployment but recording it failed; "
                    "routing must be reconciled.",
                    site_id=str(site_uuid),
                    deployment_id=str(deployment_id),
                    artifact_prefix=prefix,
                ) from exc
            logger.exception(
                "publish.ledger_failed",
                extra={"site_id": str(site_uuid), "deployment_id": str(deployment_id), "prefix": prefix},
            )
            raise
        logger.info(
            "publish.committed",
            extra={"site_id": str(site_uuid), "deployment_id": str(deployment_id)},
        )

        if report.status == DeploymentRoutingStatusEnum.succeeded:
            live_url: Optional[str] = build_live_url(site_slug)
            message = "Site published and live."
        elif report.status == DeploymentRoutingStatusEnum.failed:
            live_url = None
            message = (
                "Site content is stored but traffic was not moved for: "
                + ", ".join(report.failed_names)
                + "."
            )
        else:
            live_url = None
            message = "Site content is stored; routing is not configured so traffic was not moved."

        return PublishResult(
            deployment_id=str(deployment_id),
            artifact_prefix=prefix,
            routing_status=report.status,
            live_url=live_url,
            content_snapshot_id=str(snapshot_id),
            version_number=version_number,
            message=message,
        )
