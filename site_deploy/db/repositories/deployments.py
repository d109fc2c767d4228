from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from site_deploy.db.enums import DeploymentRoutingStatusEnum
from site_deploy.db.models import ContentSnapshot, Deployment, Site
from site_deploy.db.repositories.base import Repository, as_uuid

logger = logging.getLogger(__name__)

_SNAPSHOT_VERSION_ATTEMPTS = 3


class ContentSnapshotsRepository(Repository):
    def create_next(
        self, *, site_id: UUID, content: dict[str, Any], created_by: Optional[str] = None
    ) -> ContentSnapshot:
        """
        Persist an immutable snapshot with the next per-site version number.

        Concurrent publishes can race on the version number; the unique constraint
        decides and the loser recomputes.
        """
        attempt = 0
        while True:
            attempt += 1
            current = self.session.scalar(
                select(func.max(ContentSnapshot.version_number)).where(ContentSnapshot.site_id == site_id)
            )
            snapshot = ContentSnapshot(
                site_id=site_id,
                version_number=int(current or 0) + 1,
                content=content,
                created_by=created_by,
            )
            try:
                return self.save(snapshot)
            except IntegrityError:
                self.session.rollback()
                if attempt >= _SNAPSHOT_VERSION_ATTEMPTS:
                    raise
                logger.info(
                    "content_snapshot.version_race",
                    extra={"site_id": str(site_id), "attempt": attempt},
                )


class DeploymentsRepository(Repository):
    """
    The deployment ledger.

    Every write that changes which deployment is active runs deactivate-all then
    activate-one inside a single transaction, with the site row locked first so
    concurrent publishes and rollbacks on one site serialize here.
    """

    def list_for_site(self, *, site_id: UUID) -> list[tuple[Deployment, Optional[int]]]:
        stmt = (
            select(Deployment, ContentSnapshot.version_number)
            .outerjoin(ContentSnapshot, ContentSnapshot.id == Deployment.content_snapshot_id)
            .where(Deployment.site_id == site_id)
            .order_by(Deployment.created_at.desc(), Deployment.id.desc())
        )
        return [(row[0], row[1]) for row in self.session.execute(stmt).all()]

    def get_for_site(self, *, site_id: UUID, deployment_id: str | UUID) -> Optional[Deployment]:
        deployment_uuid = as_uuid(deployment_id)
        if deployment_uuid is None:
            return None
        stmt = select(Deployment).where(Deployment.site_id == site_id, Deployment.id == deployment_uuid)
        return self.session.scalars(stmt).first()

    def get_active(self, *, site_id: UUID) -> Optional[Deployment]:
        stmt = (
            select(Deployment)
            .where(Deployment.site_id == site_id, Deployment.is_active.is_(True))
            .order_by(Deployment.created_at.desc())
        )
        return self.session.scalars(stmt).first()

    def count_active(self, *, site_id: UUID) -> int:
        stmt = select(func.count()).select_from(Deployment).where(
            Deployment.site_id == site_id, Deployment.is_active.is_(True)
        )
        return int(self.session.scalar(stmt) or 0)

    def prefix_is_referenced(self, *, artifact_prefix: str) -> bool:
        stmt = select(Deployment.id).where(Deployment.artifact_prefix == artifact_prefix).limit(1)
        return self.session.execute(stmt).first() is not None

    def rename(self, *, deployment: Deployment, deployment_name: str) -> Deployment:
        deployment.deployment_name = deployment_name
        return self.save(deployment)

    def set_routing_status(
        self, *, deployment_id: UUID, routing_status: DeploymentRoutingStatusEnum
    ) -> None:
        self.session.execute(
            update(Deployment).where(Deployment.id == deployment_id).values(routing_status=routing_status)
        )
        self.session.commit()

    def _lock_site(self, site_id: UUID) -> None:
        locked = self.session.scalars(select(Site.id).where(Site.id == site_id).with_for_update()).first()
        if locked is None:
            raise ValueError(f"Site {site_id} not found")

    def activate_new(self, *, deployment: Deployment) -> Deployment:
        """Insert `deployment` as the only active row for its site."""
        try:
            self._lock_site(deployment.site_id)
            self.session.execute(
                update(Deployment)
                .where(Deployment.site_id == deployment.site_id, Deployment.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            deployment.is_active = True
            self.session.add(deployment)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(deployment)
        return deployment

    def reactivate(
        self,
        *,
        site_id: UUID,
        target_id: UUID,
        superseded_id: Optional[UUID] = None,
        routing_status: DeploymentRoutingStatusEnum = DeploymentRoutingStatusEnum.succeeded,
    ) -> Deployment:
        """
        Make an existing row the only active deployment.

        When `superseded_id` names a different row it is removed from the ledger in
        the same transaction; its artifacts become eligible for reclamation only
        once this commit returns.
        """
        try:
            self._lock_site(site_id)
            self.session.execute(
                update(Deployment)
                .where(Deployment.site_id == site_id, Deployment.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(
                update(Deployment)
                .where(Deployment.site_id == site_id, Deployment.id == target_id)
                .values(is_active=True, routing_status=routing_status)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValueError(f"Deployment {target_id} is no longer recorded for site {site_id}")
            if superseded_id is not None and superseded_id != target_id:
                self.session.execute(
                    delete(Deployment)
                    .where(Deployment.site_id == site_id, Deployment.id == superseded_id)
                    .execution_options(synchronize_session=False)
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        target = self.get_for_site(site_id=site_id, deployment_id=target_id)
        if target is None:
            raise ValueError(f"Deployment {target_id} is no longer recorded for site {site_id}")
        return target
