from fastapi.testclient import TestClient
from sqlalchemy import select

from site_deploy.db.enums import SiteDomainStatusEnum
from site_deploy.db.models import Page, SiteDomain
from site_deploy.main import app


def test_health_endpoints():
    with TestClient(app) as client:
        health = client.get("/health")
        db_health = client.get("/health/db")

    assert health.status_code == 200
    assert health.json() == {"ok": True}
    assert db_health.status_code == 200
    assert "db" in db_health.json()


def test_publish_list_and_rename(api_client, site_factory, storage, routing):
    site = site_factory()

    resp = api_client.post(f"/sites/{site.id}/publish", json={"deploymentName": "Spring menu", "createdBy": "ops"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["routingUpdated"] is True
    assert body["routingStatus"] == "succeeded"
    assert body["liveUrl"] == "https://acme-bakery.sites.example.test"
    assert body["versionNumber"] == 1
    assert routing.entries["acme-bakery"] == body["artifactPrefix"]
    assert storage.exists(key=f"{body['artifactPrefix']}/index.html")

    listed = api_client.get(f"/sites/{site.id}/deployments").json()
    assert listed["total"] == 1
    item = listed["deployments"][0]
    assert item["deploymentId"] == body["deploymentId"]
    assert item["deploymentName"] == "Spring menu"
    assert item["isLive"] is True
    assert item["versionNumber"] == 1

    renamed = api_client.patch(
        f"/sites/{site.id}/deployments",
        json={"deploymentId": body["deploymentId"], "deploymentName": "  Summer menu "},
    )
    assert renamed.status_code == 200
    assert renamed.json() == {"deploymentId": body["deploymentId"], "deploymentName": "Summer menu"}

    blank = api_client.patch(
        f"/sites/{site.id}/deployments", json={"deploymentId": body["deploymentId"], "deploymentName": "   "}
    )
    assert blank.status_code == 400

    missing = api_client.patch(
        f"/sites/{site.id}/deployments",
        json={"deploymentId": "00000000-0000-0000-0000-000000000000", "deploymentName": "x"},
    )
    assert missing.status_code == 404


def test_publish_without_body_and_unknown_site(api_client, site_factory):
    site = site_factory()

    assert api_client.post(f"/sites/{site.id}/publish").status_code == 201

    resp = api_client.post("/sites/00000000-0000-0000-0000-000000000000/publish", json={})
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "site_not_found"


def test_publish_upload_failure_maps_to_bad_gateway(api_client, site_factory, storage):
    site = site_factory()
    storage.fail_paths = {"about/script.js"}

    resp = api_client.post(f"/sites/{site.id}/publish", json={})

    assert resp.status_code == 502
    assert resp.json()["detail"]["error"] == "upload_failed"


def test_publish_compilation_failure_is_unprocessable(api_client, site_factory, db_session, storage):
    site = site_factory()
    page = db_session.scalars(select(Page).where(Page.site_id == site.id, Page.slug == "about")).one()
    page.content = {"blocks": [{"type": "Carousel"}]}
    db_session.commit()

    resp = api_client.post(f"/sites/{site.id}/publish", json={})

    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "compilation_failed"
    assert storage.objects == {}


def test_rollback_endpoint(api_client, site_factory, reclaimer):
    site = site_factory()
    first = api_client.post(f"/sites/{site.id}/publish", json={}).json()
    second = api_client.post(f"/sites/{site.id}/publish", json={}).json()

    resp = api_client.post(
        "/sites/rollback", json={"routableName": "acme-bakery", "deploymentId": first["deploymentId"]}
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "rolledBackTo": first["deploymentId"],
        "artifactPrefix": first["artifactPrefix"],
        "routingUpdated": True,
        "liveUrl": "https://acme-bakery.sites.example.test",
        "message": "Rollback complete; the selected deployment is live.",
    }
    assert [call["artifact_prefix"] for call in reclaimer.calls] == [second["artifactPrefix"]]

    unknown = api_client.post(
        "/sites/rollback", json={"routableName": "acme-bakery", "deploymentId": second["deploymentId"]}
    )
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["error"] == "unknown_deployment"


def test_rollback_to_missing_artifacts_conflicts(api_client, site_factory, storage):
    site = site_factory()
    first = api_client.post(f"/sites/{site.id}/publish", json={}).json()
    api_client.post(f"/sites/{site.id}/publish", json={})
    storage.delete_all_under_prefix(prefix=first["artifactPrefix"])

    resp = api_client.post(
        "/sites/rollback", json={"routableName": "acme-bakery", "deploymentId": first["deploymentId"]}
    )

    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "artifacts_missing"


def test_preview_url(api_client, site_factory):
    site = site_factory()
    published = api_client.post(f"/sites/{site.id}/publish", json={}).json()

    resp = api_client.get(f"/sites/{site.id}/deployments/{published['deploymentId']}/preview-url")
    assert resp.status_code == 200
    assert resp.json()["key"] == f"{published['artifactPrefix']}/index.html"
    assert resp.json()["url"].startswith("https://signed.example.test/")

    about = api_client.get(
        f"/sites/{site.id}/deployments/{published['deploymentId']}/preview-url", params={"path": "about/index.html"}
    )
    assert about.json()["key"] == f"{published['artifactPrefix']}/about/index.html"

    escape = api_client.get(
        f"/sites/{site.id}/deployments/{published['deploymentId']}/preview-url", params={"path": "../x"}
    )
    assert escape.status_code == 400


def test_reconcile_routing(api_client, site_factory, routing):
    site = site_factory()

    nothing_live = api_client.post(f"/sites/{site.id}/routing/reconcile")
    assert nothing_live.status_code == 409
    assert nothing_live.json()["detail"]["error"] == "nothing_live"

    published = api_client.post(f"/sites/{site.id}/publish", json={}).json()
    routing.entries.clear()

    resp = api_client.post(f"/sites/{site.id}/routing/reconcile")

    assert resp.status_code == 200
    assert resp.json()["routingStatus"] == "succeeded"
    assert resp.json()["results"] == [
        {"routableName": "acme-bakery", "status": "updated", "value": published["artifactPrefix"]}
    ]
    assert routing.entries == {"acme-bakery": published["artifactPrefix"]}


def test_custom_domain_route_and_unroute(api_client, site_factory, routing, db_session):
    site = site_factory(
        domains=[
            ("www.acme.test", SiteDomainStatusEnum.active),
            ("pending.acme.test", SiteDomainStatusEnum.pending),
        ]
    )
    domains = {d.hostname: d for d in db_session.scalars(select(SiteDomain)).all()}
    active_id = str(domains["www.acme.test"].id)
    pending_id = str(domains["pending.acme.test"].id)

    assert api_client.put(f"/sites/{site.id}/domains/{active_id}/route").status_code == 409

    published = api_client.post(f"/sites/{site.id}/publish", json={}).json()
    routing.entries.pop("www.acme.test")

    routed = api_client.put(f"/sites/{site.id}/domains/{active_id}/route")
    assert routed.status_code == 200
    assert routing.entries["www.acme.test"] == published["artifactPrefix"]

    not_active = api_client.put(f"/sites/{site.id}/domains/{pending_id}/route")
    assert not_active.status_code == 409
    assert not_active.json()["detail"]["error"] == "domain_not_active"

    removed = api_client.delete(f"/sites/{site.id}/domains/{active_id}/route")
    assert removed.status_code == 200
    assert removed.json()["status"] == "deleted"
    assert "www.acme.test" not in routing.entries

    again = api_client.delete(f"/sites/{site.id}/domains/{active_id}/route")
    assert again.json()["status"] == "already_absent"

    db_session.expire_all()
    assert db_session.get(SiteDomain, domains["www.acme.test"].id).status == SiteDomainStatusEnum.disabled

    unknown = api_client.delete(f"/sites/{site.id}/domains/00000000-0000-0000-0000-000000000000/route")
    assert unknown.status_code == 404
