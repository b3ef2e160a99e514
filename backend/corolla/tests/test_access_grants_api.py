from uuid import UUID, uuid4

from corolla import models
from .conftest import (
    TestingSessionLocal,
    auth_headers,
    create_active_grant,
    create_catalog,
    create_user,
)


def _grant_body(user, catalog, tier="Admin", instance=None, **extra):
    body = {
        "user_id": str(user.id),
        "system_id": str(catalog["id"]),
        "tier_id": str(catalog["tiers"][tier]),
    }
    if instance:
        body["instance_id"] = str(catalog["instances"][instance])
    body.update(extra)
    return body


def test_requires_authentication(client):
    resp = client.get("/api/access-grants")
    assert resp.status_code == 401
    assert resp.json()["detail"]["error"] == "UNAUTHENTICATED"


def test_create_grant_and_fetch_it(client, webhook_outbox):
    owner = create_user(name="Owner")
    grantee = create_user(name="Grace Hopper")
    catalog = create_catalog(owners=(owner,))
    headers = auth_headers(owner)

    resp = client.post(
        "/api/access-grants",
        json=_grant_body(grantee, catalog, instance="Production", notes="on-call rotation"),
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    grant = resp.json()
    assert grant["status"] == "active"
    assert grant["granted_by"] == str(owner.id)
    assert grant["user"]["email"] == grantee.email
    assert grant["system"]["name"] == catalog["name"]
    assert grant["tier"]["name"] == "Admin"
    assert grant["instance"]["name"] == "Production"

    fetched = client.get(f"/api/access-grants/{grant['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["notes"] == "on-call rotation"

    assert webhook_outbox[0]["granted_to"]["email"] == grantee.email

    db = TestingSessionLocal()
    try:
        entries = (
            db.query(models.AuditLog)
            .filter(models.AuditLog.target_id == UUID(grant["id"]))
            .all()
        )
        assert [entry.action for entry in entries] == ["create_access_grant"]
    finally:
        db.close()


def test_duplicate_grant_conflicts(client):
    owner = create_user()
    grantee = create_user()
    catalog = create_catalog(owners=(owner,))
    create_active_grant(grantee, catalog, "Admin")

    resp = client.post("/api/access-grants", json=_grant_body(grantee, catalog), headers=auth_headers(owner))
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "DUPLICATE_ACTIVE_GRANT"

    scoped = client.post(
        "/api/access-grants",
        json=_grant_body(grantee, catalog, instance="Staging"),
        headers=auth_headers(owner),
    )
    assert scoped.status_code == 201


def test_tier_must_belong_to_system(client):
    owner = create_user()
    grantee = create_user()
    catalog = create_catalog()
    other = create_catalog(tiers=("Billing",))
    body = _grant_body(grantee, catalog)
    body["tier_id"] = str(other["tiers"]["Billing"])

    resp = client.post("/api/access-grants", json=body, headers=auth_headers(owner))
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["error"] == "TIER_SYSTEM_MISMATCH"
    assert detail["message"] == f'Access tier "Billing" does not belong to system "{catalog["name"]}"'


def test_unknown_user_is_reported(client):
    owner = create_user()
    catalog = create_catalog()
    body = _grant_body(owner, catalog)
    body["user_id"] = str(uuid4())
    resp = client.post("/api/access-grants", json=body, headers=auth_headers(owner))
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "NOT_FOUND"


def test_missing_grant_is_404(client):
    headers = auth_headers(create_user())
    resp = client.get(f"/api/access-grants/{uuid4()}", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "GRANT_NOT_FOUND"


def test_list_filters_and_search(client):
    viewer = create_user()
    ada = create_user(name="Ada Lovelace")
    alan = create_user(name="Alan Turing")
    catalog = create_catalog()
    create_active_grant(ada, catalog, "Admin")
    create_active_grant(alan, catalog, "Viewer", "Production")
    headers = auth_headers(viewer)

    resp = client.get("/api/access-grants", params={"system_id": str(catalog["id"])}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 2
    assert body["limit"] == 20 and body["offset"] == 0

    resp = client.get(
        "/api/access-grants",
        params={"system_id": str(catalog["id"]), "search": "lovelace"},
        headers=headers,
    )
    data = resp.json()["data"]
    assert [grant["user"]["name"] for grant in data] == ["Ada Lovelace"]

    resp = client.get(
        "/api/access-grants",
        params={"system_id": str(catalog["id"]), "limit": 1, "offset": 1},
        headers=headers,
    )
    page = resp.json()
    assert page["total"] == 2
    assert len(page["data"]) == 1

    resp = client.get("/api/access-grants", params={"status": "bogus"}, headers=headers)
    assert resp.status_code == 422


def test_remove_grant_lifecycle(client):
    owner = create_user()
    stranger = create_user()
    grantee = create_user()
    catalog = create_catalog(owners=(owner,))
    grant_id = create_active_grant(grantee, catalog, "Admin")

    denied = client.patch(
        f"/api/access-grants/{grant_id}",
        json={"status": "removed"},
        headers=auth_headers(stranger),
    )
    assert denied.status_code == 403
    assert denied.json()["detail"]["error"] == "NOT_SYSTEM_OWNER"

    removed = client.patch(
        f"/api/access-grants/{grant_id}",
        json={"status": "removed", "notes": "left the team"},
        headers=auth_headers(owner),
    )
    assert removed.status_code == 200
    body = removed.json()
    assert body["status"] == "removed"
    assert body["removed_at"] is not None
    assert body["notes"] == "left the team"

    again = client.patch(
        f"/api/access-grants/{grant_id}",
        json={"status": "removed"},
        headers=auth_headers(owner),
    )
    assert again.status_code == 400
    assert again.json()["detail"]["error"] == "GRANT_ALREADY_REMOVED"

    regrant = client.post("/api/access-grants", json=_grant_body(grantee, catalog), headers=auth_headers(owner))
    assert regrant.status_code == 201

    active = client.get(
        "/api/access-grants",
        params={"system_id": str(catalog["id"]), "status": "active"},
        headers=auth_headers(owner),
    )
    assert active.json()["total"] == 1


def test_admin_may_remove_any_grant(client):
    admin = create_user(is_admin=True)
    grantee = create_user()
    catalog = create_catalog()
    grant_id = create_active_grant(grantee, catalog, "Viewer")
    resp = client.patch(
        f"/api/access-grants/{grant_id}",
        json={"status": "removed"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200


def test_only_removal_is_a_valid_update(client):
    owner = create_user()
    grantee = create_user()
    catalog = create_catalog(owners=(owner,))
    grant_id = create_active_grant(grantee, catalog, "Admin")
    resp = client.patch(
        f"/api/access-grants/{grant_id}",
        json={"status": "active"},
        headers=auth_headers(owner),
    )
    assert resp.status_code == 422
