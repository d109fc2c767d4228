from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from site_deploy.db.enums import DeploymentRoutingStatusEnum
from site_deploy.db.repositories.deployments import DeploymentsRepository
from site_deploy.db.repositories.sites import SitesRepository
from site_deploy.services.artifact_store import ArtifactStore, join_key
from site_deploy.services.errors import (
    ArtifactsMissing,
    LedgerInconsistency,
    RoutingUpdateFailed,
    SiteNotFound,
    UnknownDeployment,
)
from site_deploy.services.publish import build_live_url
from site_deploy.services.reclamation import ArtifactReclaimer
from site_deploy.services.routing_index import (
    RoutingConflict,
    RoutingIndex,
    RoutingIndexError,
    RoutingUnavailable,
)
from site_deploy.services.site_compiler import ROOT_DOCUMENT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Switched:
    site_id: UUID
    site_slug: str
    target_id: UUID
    target_prefix: str
    previous_id: Optional[UUID]
    previous_prefix: Optional[str]


@dataclass(frozen=True)
class RollbackResult:
    rolled_back_to: str
    artifact_prefix: str
    live_url: str
    message: str
    reclaimed_prefix: Optional[str] = None

    @property
    def routing_updated(self) -> bool:
        # Rollback never returns without having moved every routable name.
        return True


class SiteRollback:
    """
    Re-activate a previously recorded deployment.

    Order matters: probe the target's files, move routing, commit the ledger, and only
    then hand the superseded prefix to reclamation. Routing failures abort the whole
    rollback; there is no "recorded but not routed" outcome here.
    """

    def __init__(
        self,
        session: Session,
        *,
        storage: ArtifactStore,
        routing: RoutingIndex,
        reclaimer: ArtifactReclaimer,
    ) -> None:
        self.session = session
        self.storage = storage
        self.routing = routing
        self.reclaimer = reclaimer
        self.sites = SitesRepository(session)
        self.ledger = DeploymentsRepository(session)

    async def rollback(self, *, routable_name: str, deployment_id: str | UUID) -> RollbackResult:
        # Storage, routing and ledger calls block; keep them off the event loop.
        switched = await asyncio.to_thread(
            self._switch, routable_name=routable_name, deployment_id=deployment_id
        )

        reclaimed_prefix = None
        if (
            switched.previous_id is not None
            and switched.previous_id != switched.target_id
            and switched.previous_prefix != switched.target_prefix
        ):
            reclaimed_prefix = await self._schedule_reclamation(
                site_id=switched.site_id,
                deployment_id=switched.previous_id,
                artifact_prefix=switched.previous_prefix,
            )

        return RollbackResult(
            rolled_back_to=str(switched.target_id),
            artifact_prefix=switched.target_prefix,
            live_url=build_live_url(switched.site_slug),
            message="Rollback complete; the selected deployment is live.",
            reclaimed_prefix=reclaimed_prefix,
        )

    def _switch(self, *, routable_name: str, deployment_id: str | UUID) -> _Switched:
        site = self.sites.get_by_routable_name(routable_name=routable_name)
        if not site:
            raise SiteNotFound(f"No site is routed as '{routable_name}'.")
        site_id, site_slug = site.id, site.slug

        target = self.ledger.get_for_site(site_id=site_id, deployment_id=deployment_id)
        if not target:
            raise UnknownDeployment("Deployment not found for this site.")
        target_id, target_prefix = target.id, target.artifact_prefix

        if not self.storage.exists(key=join_key(target_prefix, ROOT_DOCUMENT)):
            logger.warning(
                "rollback.artifacts_missing",
                extra={"site_id": str(site_id), "deployment_id": str(target_id), "prefix": target_prefix},
            )
            raise ArtifactsMissing("The deployment's files no longer exist; refusing to route traffic to it.")

        previous = self.ledger.get_active(site_id=site_id)
        previous_id = previous.id if previous else None
        previous_prefix = previous.artifact_prefix if previous else None

        if not self.routing.enabled:
            raise RoutingUnavailable("Routing index is not configured; rollback cannot move traffic.")

        names = self.sites.routable_names(site=site)
        self._route_all(names=names, prefix=target_prefix, restore_prefix=previous_prefix, site_id=site_id)
        logger.info(
            "rollback.routed",
            extra={"site_id": str(site_id), "deployment_id": str(target_id), "names": names},
        )

        try:
            self.ledger.reactivate(
                site_id=site_id,
                target_id=target_id,
                superseded_id=previous_id,
                routing_status=DeploymentRoutingStatusEnum.succeeded,
            )
        except Exception as exc:
            logger.critical(
                "rollback.ledger_inconsistency",
                extra={
                    "site_id": str(site_id),
                    "deployment_id": str(target_id),
                    "prefix": target_prefix,
                    "routed_names": names,
                    "error": str(exc),
                },
            )
            raise LedgerInconsistency(
                "Traffic was routed to the rollback target but recording it failed; "
                "routing must be reconciled.",
                site_id=str(site_id),
                deployment_id=str(target_id),
                artifact_prefix=target_prefix,
            ) from exc
        logger.info(
            "rollback.committed",
            extra={
                "site_id": str(site_id),
                "deployment_id": str(target_id),
                "superseded_id": str(previous_id) if previous_id else None,
            },
        )

        return _Switched(
            site_id=site_id,
            site_slug=site_slug,
            target_id=target_id,
            target_prefix=target_prefix,
            previous_id=previous_id,
            previous_prefix=previous_prefix,
        )

    def _route_all(
        self, *, names: list[str], prefix: str, restore_prefix: Optional[str], site_id: UUID
    ) -> None:
        switched: list[str] = []
        try:
            for name in names:
                self.routing.set(name, prefix)
                switched.append(name)
        except RoutingConflict:
            # The winning writer owns these names now; leave them as it set them.
            logger.exception(
                "rollback.routing_conflict",
                extra={"site_id": str(site_id), "prefix": prefix, "switched": switched},
            )
            raise
        except RoutingIndexError as exc:
            logger.exception(
                "rollback.routing_failed",
                extra={"site_id": str(site_id), "prefix": prefix, "switched": switched},
            )
            self._restore(names=switched, prefix=restore_prefix, site_id=site_id)
            if isinstance(exc, RoutingUnavailable):
                raise
            raise RoutingUpdateFailed(f"Routing update failed: {exc}") from exc

    def _restore(self, *, names: list[str], prefix: Optional[str], site_id: UUID) -> None:
        """Best effort: point already-switched names back where they were."""
        for name in names:
            try:
                if prefix:
                    self.routing.set(name, prefix)
                else:
                    self.routing.delete(name)
            except RoutingIndexError:
                logger.exception(
                    "rollback.restore_failed",
                    extra={"site_id": str(site_id), "routable_name": name, "prefix": prefix},
                )

    async def _schedule_reclamation(
        self, *, site_id: UUID, deployment_id: UUID, artifact_prefix: str
    ) -> Optional[str]:
        try:
            await self.reclaimer.enqueue(
                site_id=str(site_id),
                deployment_id=str(deployment_id),
                artifact_prefix=artifact_prefix,
                reason="superseded_by_rollback",
            )
        except Exception:
            logger.exception(
                "rollback.reclaim_enqueue_failed",
                extra={"site_id": str(site_id), "deployment_id": str(deployment_id), "prefix": artifact_prefix},
            )
            return None
        return artifact_prefix
