from __future__ import annotations

import logging
from typing import Optional, Protocol

from site_deploy.config import settings
from site_deploy.temporal.client import get_temporal_client
from site_deploy.temporal.workflows.reclaim_artifacts import (
    ReclaimDeploymentArtifactsInput,
    ReclaimDeploymentArtifactsWorkflow,
)

logger = logging.getLogger(__name__)


class ArtifactReclaimer(Protocol):
    async def enqueue(
        self, *, site_id: str, deployment_id: str, artifact_prefix: str, reason: Optional[str] = None
    ) -> str: ...


class TemporalArtifactReclaimer:
    """Hands superseded prefixes to the reclamation workflow; deletion happens on the worker."""

    async def enqueue(
        self, *, site_id: str, deployment_id: str, artifact_prefix: str, reason: Optional[str] = None
    ) -> str:
        temporal = await get_temporal_client()
        handle = await temporal.start_workflow(
            ReclaimDeploymentArtifactsWorkflow.run,
            ReclaimDeploymentArtifactsInput(
                site_id=site_id,
                deployment_id=deployment_id,
                artifact_prefix=artifact_prefix,
                reason=reason,
            ),
            id=f"reclaim-deployment-{deployment_id}",
            task_queue=settings.TEMPORAL_TASK_QUEUE,
        )
        logger.info(
            "reclaim.enqueued",
            extra={"site_id": site_id, "deployment_id": deployment_id, "prefix": artifact_prefix, "workflow_id": handle.id},
        )
        return handle.id
