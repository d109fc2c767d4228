from __future__ import annotations

import asyncio
import concurrent.futures

from temporalio.worker import Worker

from site_deploy.config import settings
from site_deploy.temporal.activities.reclaim_activities import reclaim_deployment_artifacts_activity
from site_deploy.temporal.client import get_temporal_client
from site_deploy.temporal.workflows.reclaim_artifacts import ReclaimDeploymentArtifactsWorkflow


async def main() -> None:
    client = await get_temporal_client()
    with concurrent.futures.ThreadPoolExecutor(max_workers=4) as activity_executor:
        worker = Worker(
            client,
            task_queue=settings.TEMPORAL_TASK_QUEUE,
            workflows=[ReclaimDeploymentArtifactsWorkflow],
            activities=[reclaim_deployment_artifacts_activity],
            activity_executor=activity_executor,
        )
        await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
