from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from site_deploy.config import settings
    from site_deploy.temporal.activities.reclaim_activities import reclaim_deployment_artifacts_activity


@dataclass
class ReclaimDeploymentArtifactsInput:
    site_id: str
    deployment_id: str
    artifact_prefix: str
    reason: Optional[str] = None


@workflow.defn
class ReclaimDeploymentArtifactsWorkflow:
    @workflow.run
    async def run(self, input: ReclaimDeploymentArtifactsInput) -> Dict[str, Any]:
        return await workflow.execute_activity(
            reclaim_deployment_artifacts_activity,
            {
                "site_id": input.site_id,
                "deployment_id": input.deployment_id,
                "artifact_prefix": input.artifact_prefix,
            },
            start_to_close_timeout=timedelta(minutes=settings.RECLAIM_ACTIVITY_TIMEOUT_MINUTES),
            retry_policy=RetryPolicy(
                initial_interval=timedelta(seconds=10),
                backoff_coefficient=2.0,
                maximum_interval=timedelta(minutes=10),
                maximum_attempts=settings.RECLAIM_ACTIVITY_MAX_ATTEMPTS,
                non_retryable_error_types=["ValueError"],
            ),
        )
