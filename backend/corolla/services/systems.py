"""System catalog maintenance: systems, tiers, instances and owners."""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, selectinload

from .. import models, schemas

# purpose: maintain the entities that bulk rows and single grants resolve against
# status: active


class CatalogError(RuntimeError):
    """Base error for catalog maintenance."""

    code = "CATALOG_ERROR"


class SystemNotFound(CatalogError):
    code = "SYSTEM_NOT_FOUND"


class UserNotFound(CatalogError):
    code = "USER_NOT_FOUND"


class SystemNameExists(CatalogError):
    code = "SYSTEM_NAME_EXISTS"


class TierNameExists(CatalogError):
    code = "TIER_NAME_EXISTS"


class InstanceNameExists(CatalogError):
    code = "INSTANCE_NAME_EXISTS"


def _name_taken(db: Session, column, name: str, *criteria) -> bool:
    return (
        db.query(column)
        .filter(sa.func.lower(column) == name.strip().lower(), *criteria)
        .first()
        is not None
    )


def list_systems(db: Session, search: str | None = None) -> Sequence[models.System]:
    query = db.query(models.System)
    if search:
        query = query.filter(sa.func.lower(models.System.name).like(f"%{search.strip().lower()}%"))
    return query.order_by(models.System.name.asc()).all()


def get_system(db: Session, system_id: UUID) -> models.System:
    system = (
        db.query(models.System)
        .options(selectinload(models.System.tiers), selectinload(models.System.instances))
        .filter(models.System.id == system_id)
        .first()
    )
    if system is None:
        raise SystemNotFound(f"System with ID '{system_id}' not found")
    return system


def create_system(db: Session, payload: schemas.SystemCreate) -> models.System:
    name = payload.name.strip()
    if _name_taken(db, models.System.name, name):
        raise SystemNameExists(f"System with name '{name}' already exists")
    system = models.System(name=name, description=payload.description)
    db.add(system)
    db.flush()
    return system


def create_tier(db: Session, system: models.System, payload: schemas.TierCreate) -> models.AccessTier:
    name = payload.name.strip()
    if _name_taken(db, models.AccessTier.name, name, models.AccessTier.system_id == system.id):
        raise TierNameExists(f"Tier '{name}' already exists for this system")
    tier = models.AccessTier(system_id=system.id, name=name)
    db.add(tier)
    db.flush()
    return tier


def create_instance(db: Session, system: models.System, payload: schemas.InstanceCreate) -> models.Instance:
    name = payload.name.strip()
    if _name_taken(db, models.Instance.name, name, models.Instance.system_id == system.id):
        raise InstanceNameExists(f"Instance '{name}' already exists for this system")
    instance = models.Instance(system_id=system.id, name=name)
    db.add(instance)
    db.flush()
    return instance


def list_owners(db: Session, system: models.System) -> list[models.User]:
    return (
        db.query(models.User)
        .join(models.SystemOwner, models.SystemOwner.user_id == models.User.id)
        .filter(models.SystemOwner.system_id == system.id)
        .order_by(models.User.email.asc())
        .all()
    )


def add_owners(db: Session, system: models.System, user_ids: Sequence[UUID]) -> list[models.User]:
    """Attach owners idempotently; unknown users abort the whole request."""

    existing = {owner.user_id for owner in system.owners}
    for user_id in dict.fromkeys(user_ids):
        if db.get(models.User, user_id) is None:
            raise UserNotFound(f"User with ID '{user_id}' not found")
        if user_id not in existing:
            db.add(models.SystemOwner(system_id=system.id, user_id=user_id))
            existing.add(user_id)
    db.flush()
    return list_owners(db, system)


def is_system_owner(db: Session, system_id: UUID, user_id: UUID) -> bool:
    return (
        db.query(models.SystemOwner)
        .filter(models.SystemOwner.system_id == system_id, models.SystemOwner.user_id == user_id)
        .first()
        is not None
    )
