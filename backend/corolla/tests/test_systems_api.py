from uuid import uuid4

from .conftest import auth_headers, create_catalog, create_user


def _system_name():
    return f"Vault-{uuid4().hex[:8]}"


def test_admin_creates_system_and_catalog(client):
    admin = create_user(is_admin=True)
    headers = auth_headers(admin)
    name = _system_name()

    resp = client.post("/api/systems", json={"name": name, "description": "Secrets"}, headers=headers)
    assert resp.status_code == 201
    system = resp.json()
    assert system["name"] == name

    tier = client.post(f"/api/systems/{system['id']}/tiers", json={"name": "Reader"}, headers=headers)
    assert tier.status_code == 201
    instance = client.post(f"/api/systems/{system['id']}/instances", json={"name": "EU"}, headers=headers)
    assert instance.status_code == 201

    detail = client.get(f"/api/systems/{system['id']}", headers=headers).json()
    assert [t["name"] for t in detail["tiers"]] == ["Reader"]
    assert [i["name"] for i in detail["instances"]] == ["EU"]

    listed = client.get("/api/systems", params={"search": name.lower()}, headers=headers).json()
    assert [s["id"] for s in listed] == [system["id"]]


def test_only_admins_create_systems(client):
    resp = client.post("/api/systems", json={"name": _system_name()}, headers=auth_headers(create_user()))
    assert resp.status_code == 403
    assert resp.json()["detail"]["error"] == "FORBIDDEN"


def test_system_names_are_unique(client):
    headers = auth_headers(create_user(is_admin=True))
    name = _system_name()
    assert client.post("/api/systems", json={"name": name}, headers=headers).status_code == 201
    resp = client.post("/api/systems", json={"name": name.upper()}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "SYSTEM_NAME_EXISTS"


def test_tier_and_instance_names_are_unique_per_system(client):
    owner = create_user()
    catalog = create_catalog(owners=(owner,))
    headers = auth_headers(owner)

    tier = client.post(f"/api/systems/{catalog['id']}/tiers", json={"name": "admin"}, headers=headers)
    assert tier.status_code == 409
    assert tier.json()["detail"]["error"] == "TIER_NAME_EXISTS"

    instance = client.post(f"/api/systems/{catalog['id']}/instances", json={"name": "Staging"}, headers=headers)
    assert instance.status_code == 409
    assert instance.json()["detail"]["error"] == "INSTANCE_NAME_EXISTS"

    other = create_catalog(owners=(owner,))
    reused = client.post(f"/api/systems/{other['id']}/tiers", json={"name": "Auditor"}, headers=headers)
    assert reused.status_code == 201


def test_non_owner_cannot_modify_system(client):
    catalog = create_catalog()
    headers = auth_headers(create_user())
    resp = client.post(f"/api/systems/{catalog['id']}/tiers", json={"name": "Operator"}, headers=headers)
    assert resp.status_code == 403


def test_owners_are_added_idempotently(client):
    admin = create_user(is_admin=True)
    alice = create_user()
    catalog = create_catalog()
    headers = auth_headers(admin)

    resp = client.post(
        f"/api/systems/{catalog['id']}/owners",
        json={"user_ids": [str(alice.id), str(alice.id)]},
        headers=headers,
    )
    assert resp.status_code == 201
    assert [owner["email"] for owner in resp.json()] == [alice.email]

    again = client.post(f"/api/systems/{catalog['id']}/owners", json={"user_ids": [str(alice.id)]}, headers=headers)
    assert len(again.json()) == 1

    listed = client.get(f"/api/systems/{catalog['id']}/owners", headers=headers).json()
    assert [owner["id"] for owner in listed] == [str(alice.id)]

    tier = client.post(f"/api/systems/{catalog['id']}/tiers", json={"name": "Operator"}, headers=auth_headers(alice))
    assert tier.status_code == 201


def test_unknown_owner_is_rejected(client):
    catalog = create_catalog()
    resp = client.post(
        f"/api/systems/{catalog['id']}/owners",
        json={"user_ids": [str(uuid4())]},
        headers=auth_headers(create_user(is_admin=True)),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "USER_NOT_FOUND"


def test_missing_system_is_404(client):
    headers = auth_headers(create_user())
    resp = client.get(f"/api/systems/{uuid4()}", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "SYSTEM_NOT_FOUND"
    assert client.get(f"/api/systems/{uuid4()}/tiers", headers=headers).status_code == 404
