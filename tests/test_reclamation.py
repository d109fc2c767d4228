import asyncio
from contextlib import contextmanager

import pytest

from conftest import FakeArtifactStore
from site_deploy.config import settings
from site_deploy.db.enums import DeploymentRoutingStatusEnum
from site_deploy.db.models import Deployment
from site_deploy.services import reclamation as reclamation_module
from site_deploy.services.reclamation import TemporalArtifactReclaimer
from site_deploy.temporal.activities import reclaim_activities
from site_deploy.temporal.workflows.reclaim_artifacts import ReclaimDeploymentArtifactsInput

PREFIX = "tenant/t1/business/b1/site/s1/deployments/d-old"


class FakeTemporalHandle:
    def __init__(self, workflow_id: str) -> None:
        self.id = workflow_id
        self.first_execution_run_id = f"{workflow_id}-run"


class FakeTemporalClient:
    def __init__(self) -> None:
        self.started: list[tuple[tuple, dict]] = []

    async def start_workflow(self, *args, **kwargs) -> FakeTemporalHandle:
        self.started.append((args, kwargs))
        return FakeTemporalHandle(kwargs.get("id") or "test-workflow")


@pytest.fixture()
def activity_env(db_session, monkeypatch):
    store = FakeArtifactStore()
    store.objects[f"{PREFIX}/index.html"] = (b"old", "text/html")
    store.objects[f"{PREFIX}/about/index.html"] = (b"old", "text/html")

    @contextmanager
    def _session_scope():
        yield db_session

    monkeypatch.setattr(reclaim_activities, "session_scope", _session_scope)
    monkeypatch.setattr(reclaim_activities, "ArtifactStore", lambda: store)
    return store


def test_activity_deletes_unreferenced_prefix(activity_env):
    result = reclaim_activities.reclaim_deployment_artifacts_activity(
        {"site_id": "s1", "deployment_id": "d-old", "artifact_prefix": PREFIX}
    )

    assert result == {"status": "deleted", "artifact_prefix": PREFIX, "deleted": 2}
    assert activity_env.objects == {}


def test_activity_skips_prefix_still_in_ledger(activity_env, db_session, site_factory):
    site = site_factory()
    db_session.add(
        Deployment(
            site_id=site.id,
            artifact_prefix=PREFIX,
            is_active=True,
            routing_status=DeploymentRoutingStatusEnum.succeeded,
        )
    )
    db_session.commit()

    result = reclaim_activities.reclaim_deployment_artifacts_activity(
        {"site_id": str(site.id), "deployment_id": "d-old", "artifact_prefix": PREFIX}
    )

    assert result["status"] == "skipped"
    assert activity_env.deleted_prefixes == []
    assert len(activity_env.objects) == 2


def test_activity_requires_a_prefix(activity_env):
    with pytest.raises(ValueError):
        reclaim_activities.reclaim_deployment_artifacts_activity({"artifact_prefix": "  "})


def test_reclaimer_starts_workflow_on_task_queue(monkeypatch):
    client = FakeTemporalClient()

    async def _get_temporal_client():
        return client

    monkeypatch.setattr(reclamation_module, "get_temporal_client", _get_temporal_client)

    workflow_id = asyncio.run(
        TemporalArtifactReclaimer().enqueue(site_id="s1", deployment_id="d-old", artifact_prefix=PREFIX)
    )

    assert workflow_id == "reclaim-deployment-d-old"
    (args, kwargs) = client.started[0]
    assert kwargs["task_queue"] == settings.TEMPORAL_TASK_QUEUE
    assert kwargs["id"] == "reclaim-deployment-d-old"
    assert args[1] == ReclaimDeploymentArtifactsInput(
        site_id="s1", deployment_id="d-old", artifact_prefix=PREFIX, reason=None
    )
