from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from site_deploy.db.deps import get_session
from site_deploy.dependencies import get_routing_index
from site_deploy.routers.errors import to_http_exception
from site_deploy.services.errors import DeploymentError
from site_deploy.services.routing_index import RoutingIndex, RoutingWriteResult
from site_deploy.services.routing_sync import RoutingSync

router = APIRouter(prefix="/sites", tags=["routing"])


def _serialize_write(result: RoutingWriteResult) -> dict:
    return {"routableName": result.key, "status": result.status.value, "value": result.value}


@router.post("/{site_id}/routing/reconcile")
def reconcile_routing(
    site_id: str,
    session: Session = Depends(get_session),
    routing: RoutingIndex = Depends(get_routing_index),
) -> dict:
    try:
        result = RoutingSync(session, routing=routing).reconcile(site_id=site_id)
    except DeploymentError as exc:
        raise to_http_exception(exc) from exc
    return {
        "deploymentId": result.deployment_id,
        "artifactPrefix": result.artifact_prefix,
        "routingStatus": result.routing_status.value,
        "results": [_serialize_write(item) for item in result.results],
        "failedNames": result.failed_names,
    }


@router.put("/{site_id}/domains/{domain_id}/route")
def route_domain(
    site_id: str,
    domain_id: str,
    session: Session = Depends(get_session),
    routing: RoutingIndex = Depends(get_routing_index),
) -> dict:
    try:
        result = RoutingSync(session, routing=routing).route_domain(site_id=site_id, domain_id=domain_id)
    except DeploymentError as exc:
        raise to_http_exception(exc) from exc
    return _serialize_write(result)


@router.delete("/{site_id}/domains/{domain_id}/route")
def unroute_domain(
    site_id: str,
    domain_id: str,
    session: Session = Depends(get_session),
    routing: RoutingIndex = Depends(get_routing_index),
) -> dict:
    try:
        result = RoutingSync(session, routing=routing).unroute_domain(site_id=site_id, domain_id=domain_id)
    except DeploymentError as exc:
        raise to_http_exception(exc) from exc
    return _serialize_write(result)
