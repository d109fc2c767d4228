from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from site_deploy.db.enums import DeploymentRoutingStatusEnum, SiteDomainStatusEnum
from site_deploy.db.models import Deployment, Site, SiteDomain
from site_deploy.db.repositories.deployments import DeploymentsRepository
from site_deploy.db.repositories.sites import SitesRepository
from site_deploy.services.errors import DomainNotActive, DomainNotFound, NothingLive, SiteNotFound
from site_deploy.services.publish import update_routing_best_effort
from site_deploy.services.routing_index import RoutingIndex, RoutingWriteResult

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    deployment_id: str
    artifact_prefix: str
    routing_status: DeploymentRoutingStatusEnum
    results: list[RoutingWriteResult] = field(default_factory=list)
    failed_names: list[str] = field(default_factory=list)


class RoutingSync:
    """Operator-side routing maintenance driven from the ledger's active deployment."""

    def __init__(self, session: Session, *, routing: RoutingIndex) -> None:
        self.session = session
        self.routing = routing
        self.sites = SitesRepository(session)
        self.ledger = DeploymentsRepository(session)

    def _require_site(self, site_id: str | UUID) -> Site:
        site = self.sites.get(site_id=site_id)
        if not site:
            raise SiteNotFound("Site not found")
        return site

    def _require_live(self, site: Site) -> Deployment:
        active = self.ledger.get_active(site_id=site.id)
        if not active:
            raise NothingLive("Site has no live deployment.")
        return active

    def _require_domain(self, site: Site, domain_id: str | UUID) -> SiteDomain:
        domain = self.sites.get_domain(site_id=site.id, domain_id=domain_id)
        if not domain:
            raise DomainNotFound("Domain not found for this site.")
        return domain

    def reconcile(self, *, site_id: str | UUID) -> ReconcileResult:
        """Rewrite every routing entry of the site from the ledger's active deployment."""
        site = self._require_site(site_id)
        active = self._require_live(site)
        deployment_id, prefix = active.id, active.artifact_prefix

        names = self.sites.routable_names(site=site)
        report = update_routing_best_effort(self.routing, names=names, prefix=prefix)
        self.ledger.set_routing_status(deployment_id=deployment_id, routing_status=report.status)
        logger.info(
            "routing.reconciled",
            extra={
                "site_id": str(site.id),
                "deployment_id": str(deployment_id),
                "routing_status": report.status.value,
                "failed_names": report.failed_names,
            },
        )
        return ReconcileResult(
            deployment_id=str(deployment_id),
            artifact_prefix=prefix,
            routing_status=report.status,
            results=report.results,
            failed_names=report.failed_names,
        )

    def route_domain(self, *, site_id: str | UUID, domain_id: str | UUID) -> RoutingWriteResult:
        site = self._require_site(site_id)
        domain = self._require_domain(site, domain_id)
        if domain.status != SiteDomainStatusEnum.active:
            raise DomainNotActive(f"Domain '{domain.hostname}' is {domain.status.value}; only active domains are routed.")
        active = self._require_live(site)
        return self.routing.set(domain.hostname.strip().lower(), active.artifact_prefix)

    def unroute_domain(self, *, site_id: str | UUID, domain_id: str | UUID) -> RoutingWriteResult:
        site = self._require_site(site_id)
        domain = self._require_domain(site, domain_id)
        result = self.routing.delete(domain.hostname.strip().lower())
        if domain.status != SiteDomainStatusEnum.disabled:
            domain.status = SiteDomainStatusEnum.disabled
            self.sites.save(domain)
        logger.info(
            "routing.domain_removed",
            extra={"site_id": str(site.id), "hostname": domain.hostname, "status": result.status.value},
        )
        return result
