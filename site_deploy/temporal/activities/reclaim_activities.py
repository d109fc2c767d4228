from __future__ import annotations

import logging
from typing import Any, Dict

from temporalio import activity

from site_deploy.db.base import session_scope
from site_deploy.db.repositories.deployments import DeploymentsRepository
from site_deploy.services.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)


@activity.defn
def reclaim_deployment_artifacts_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Delete every object under a superseded deployment's prefix.

    The ledger is consulted again first: if any deployment row still references the
    prefix the activity does nothing.
    """
    artifact_prefix = str(params.get("artifact_prefix") or "").strip()
    site_id = params.get("site_id")
    deployment_id = params.get("deployment_id")
    if not artifact_prefix:
        raise ValueError("artifact_prefix is required")

    with session_scope() as session:
        if DeploymentsRepository(session).prefix_is_referenced(artifact_prefix=artifact_prefix):
            logger.warning(
                "reclaim.skipped",
                extra={"site_id": site_id, "deployment_id": deployment_id, "prefix": artifact_prefix},
            )
            return {"status": "skipped", "artifact_prefix": artifact_prefix, "deleted": 0}

    try:
        deleted = ArtifactStore().delete_all_under_prefix(prefix=artifact_prefix)
    except Exception:
        logger.exception(
            "reclaim.failed",
            extra={"site_id": site_id, "deployment_id": deployment_id, "prefix": artifact_prefix},
        )
        raise
    logger.info(
        "reclaim.deleted",
        extra={"site_id": site_id, "deployment_id": deployment_id, "prefix": artifact_prefix, "deleted": deleted},
    )
    return {"status": "deleted", "artifact_prefix": artifact_prefix, "deleted": deleted}
