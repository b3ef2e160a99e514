from uuid import UUID

from corolla import models
from .conftest import TestingSessionLocal, auth_headers, create_catalog, create_user


def _actions_for(grant_id):
    db = TestingSessionLocal()
    try:
        entries = (
            db.query(models.AuditLog)
            .filter(models.AuditLog.target_id == UUID(grant_id))
            .order_by(models.AuditLog.created_at.asc())
            .all()
        )
        return [entry.action for entry in entries]
    finally:
        db.close()


def test_grant_lifecycle_is_audited(client):
    owner = create_user()
    grantee = create_user()
    catalog = create_catalog(owners=(owner,))
    headers = auth_headers(owner)

    grant = client.post(
        "/api/access-grants",
        json={
            "user_id": str(grantee.id),
            "system_id": str(catalog["id"]),
            "tier_id": str(catalog["tiers"]["Viewer"]),
        },
        headers=headers,
    ).json()
    client.patch(f"/api/access-grants/{grant['id']}", json={"status": "removed"}, headers=headers)

    assert _actions_for(grant["id"]) == ["create_access_grant", "remove_access_grant"]
