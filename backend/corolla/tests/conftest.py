import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from corolla.main import app
from corolla.database import Base, build_engine, get_db
from corolla import auth, models, notify

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def webhook_outbox():
    notify.WEBHOOK_OUTBOX.clear()
    yield notify.WEBHOOK_OUTBOX
    notify.WEBHOOK_OUTBOX.clear()

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def create_user(*, email: str | None = None, name: str = "Test User", is_admin: bool = False) -> models.User:
    """Insert a user directly; identity issuance is handled outside this service."""

    db = TestingSessionLocal()
    try:
        user = models.User(
            email=email or f"user-{uuid.uuid4()}@example.com",
            name=name,
            is_admin=is_admin,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        db.expunge(user)
        return user
    finally:
        db.close()


def auth_headers(user: models.User) -> dict:
    token = auth.create_access_token({"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


def create_catalog(
    *,
    tiers: tuple[str, ...] = ("Admin", "Viewer"),
    instances: tuple[str, ...] = ("Production", "Staging"),
    owners: tuple[models.User, ...] = (),
) -> dict:
    """Create a uniquely named system with tiers, instances and owners.

    Returns plain ids keyed by name so callers never touch detached rows.
    """

    db = TestingSessionLocal()
    try:
        system = models.System(name=f"System-{uuid.uuid4().hex[:8]}", description="Test system")
        db.add(system)
        db.flush()
        tier_rows = [models.AccessTier(system_id=system.id, name=name) for name in tiers]
        instance_rows = [models.Instance(system_id=system.id, name=name) for name in instances]
        db.add_all(tier_rows + instance_rows)
        for owner in owners:
            db.add(models.SystemOwner(system_id=system.id, user_id=owner.id))
        db.commit()
        return {
            "id": system.id,
            "name": system.name,
            "tiers": {tier.name: tier.id for tier in tier_rows},
            "instances": {instance.name: instance.id for instance in instance_rows},
        }
    finally:
        db.close()


def create_active_grant(user: models.User, catalog: dict, tier: str, instance: str | None = None) -> uuid.UUID:
    db = TestingSessionLocal()
    try:
        instance_id = catalog["instances"][instance] if instance else None
        grant = models.AccessGrant(
            user_id=user.id,
            system_id=catalog["id"],
            tier_id=catalog["tiers"][tier],
            instance_id=instance_id,
            instance_scope=models.instance_scope_for(instance_id),
            granted_by=user.id,
        )
        db.add(grant)
        db.commit()
        return grant.id
    finally:
        db.close()
