from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from site_deploy.db.deps import get_session
from site_deploy.db.models import Deployment
from site_deploy.db.repositories.deployments import DeploymentsRepository
from site_deploy.db.repositories.sites import SitesRepository
from site_deploy.dependencies import get_artifact_store, get_page_compiler, get_reclaimer, get_routing_index
from site_deploy.routers.errors import to_http_exception
from site_deploy.schemas.deployments import DeploymentRenameRequest, PublishRequest, RollbackRequest
from site_deploy.services.artifact_store import ArtifactStore, join_key
from site_deploy.services.errors import DeploymentError
from site_deploy.services.publish import SitePublisher
from site_deploy.services.reclamation import ArtifactReclaimer
from site_deploy.services.rollback import SiteRollback
from site_deploy.services.routing_index import RoutingIndex
from site_deploy.services.site_compiler import ROOT_DOCUMENT, PageCompiler

router = APIRouter(prefix="/sites", tags=["deployments"])


def _serialize_deployment(deployment: Deployment, version_number: int | None) -> dict:
    return {
        "deploymentId": str(deployment.id),
        "deploymentName": deployment.deployment_name,
        "artifactPrefix": deployment.artifact_prefix,
        "isLive": bool(deployment.is_active),
        "routingStatus": deployment.routing_status.value,
        "routingUpdated": deployment.routing_updated,
        "contentSnapshotId": str(deployment.content_snapshot_id) if deployment.content_snapshot_id else None,
        "versionNumber": version_number,
        "createdAt": deployment.created_at.isoformat() if deployment.created_at else None,
    }


def _require_site(session: Session, site_id: str):
    site = SitesRepository(session).get(site_id=site_id)
    if not site:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "site_not_found", "message": "Site not found"},
        )
    return site


@router.post("/rollback")
async def rollback_site(
    payload: RollbackRequest,
    session: Session = Depends(get_session),
    storage: ArtifactStore = Depends(get_artifact_store),
    routing: RoutingIndex = Depends(get_routing_index),
    reclaimer: ArtifactReclaimer = Depends(get_reclaimer),
) -> dict:
    rollback = SiteRollback(session, storage=storage, routing=routing, reclaimer=reclaimer)
    try:
        result = await rollback.rollback(routable_name=payload.routableName, deployment_id=payload.deploymentId)
    except DeploymentError as exc:
        raise to_http_exception(exc) from exc
    return {
        "rolledBackTo": result.rolled_back_to,
        "artifactPrefix": result.artifact_prefix,
        "routingUpdated": result.routing_updated,
        "liveUrl": result.live_url,
        "message": result.message,
    }


@router.post("/{site_id}/publish", status_code=status.HTTP_201_CREATED)
def publish_site(
    site_id: str,
    payload: PublishRequest | None = None,
    session: Session = Depends(get_session),
    storage: ArtifactStore = Depends(get_artifact_store),
    routing: RoutingIndex = Depends(get_routing_index),
    compiler: PageCompiler = Depends(get_page_compiler),
) -> dict:
    payload = payload or PublishRequest()
    publisher = SitePublisher(session, storage=storage, routing=routing, compiler=compiler)
    try:
        result = publisher.publish(
            site_id=site_id,
            deployment_name=payload.deploymentName,
            created_by=payload.createdBy,
        )
    except DeploymentError as exc:
        raise to_http_exception(exc) from exc
    return {
        "deploymentId": result.deployment_id,
        "artifactPrefix": result.artifact_prefix,
        "routingUpdated": result.routing_updated,
        "routingStatus": result.routing_status.value,
        "liveUrl": result.live_url,
        "contentSnapshotId": result.content_snapshot_id,
        "versionNumber": result.version_number,
        "message": result.message,
    }


@router.get("/{site_id}/deployments")
def list_deployments(site_id: str, session: Session = Depends(get_session)) -> dict:
    site = _require_site(session, site_id)
    rows = DeploymentsRepository(session).list_for_site(site_id=site.id)
    items = [_serialize_deployment(deployment, version_number) for deployment, version_number in rows]
    return {"deployments": items, "total": len(items)}


@router.patch("/{site_id}/deployments")
def rename_deployment(
    site_id: str,
    payload: DeploymentRenameRequest,
    session: Session = Depends(get_session),
) -> dict:
    site = _require_site(session, site_id)
    deployment_name = payload.deploymentName.strip()
    if not deployment_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_deployment_name", "message": "deploymentName cannot be blank."},
        )
    repo = DeploymentsRepository(session)
    deployment = repo.get_for_site(site_id=site.id, deployment_id=payload.deploymentId)
    if not deployment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "unknown_deployment", "message": "Deployment not found for this site."},
        )
    deployment = repo.rename(deployment=deployment, deployment_name=deployment_name)
    return {"deploymentId": str(deployment.id), "deploymentName": deployment.deployment_name}


@router.get("/{site_id}/deployments/{deployment_id}/preview-url")
def deployment_preview_url(
    site_id: str,
    deployment_id: str,
    path: str = ROOT_DOCUMENT,
    session: Session = Depends(get_session),
    storage: ArtifactStore = Depends(get_artifact_store),
) -> dict:
    site = _require_site(session, site_id)
    deployment = DeploymentsRepository(session).get_for_site(site_id=site.id, deployment_id=deployment_id)
    if not deployment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "unknown_deployment", "message": "Deployment not found for this site."},
        )
    try:
        key = join_key(deployment.artifact_prefix, path)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_path", "message": str(exc)},
        ) from exc
    return {
        "deploymentId": str(deployment.id),
        "key": key,
        "url": storage.signed_read_url(key=key),
        "expiresIn": storage.presign_ttl,
    }
