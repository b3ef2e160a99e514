"""Storage collaborator used by the grant ingestion and validation engine."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Iterator, NamedTuple, Protocol, Sequence
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import audit, models

# purpose: narrow lookup/insert surface so validation runs without a real database
# status: active
# depends_on: corolla.models (User, System, Instance, AccessTier, AccessGrant)

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """Raised when the storage backend fails during a lookup or commit."""


class GrantConflict(RepositoryError):
    """Raised when the storage layer rejects a duplicate active grant on commit."""


@dataclass(frozen=True)
class UserRef:
    id: UUID
    name: str
    email: str


@dataclass(frozen=True)
class SystemRef:
    id: UUID
    name: str
    description: str | None = None


@dataclass(frozen=True)
class TierRef:
    id: UUID
    name: str
    system_id: UUID


@dataclass(frozen=True)
class InstanceRef:
    id: UUID
    name: str
    system_id: UUID


class GrantKey(NamedTuple):
    """Identity of an active grant; a ``None`` instance means all instances."""

    user_id: UUID
    system_id: UUID
    tier_id: UUID
    instance_id: UUID | None


@dataclass(frozen=True)
class GrantDraft:
    """Fully validated grant waiting to be inserted."""

    user_id: UUID
    system_id: UUID
    tier_id: UUID
    instance_id: UUID | None = None
    notes: str | None = None

    @property
    def key(self) -> GrantKey:
        return GrantKey(self.user_id, self.system_id, self.tier_id, self.instance_id)


class GrantRepository(Protocol):
    def find_user_by_email(self, email: str) -> UserRef | None: ...

    def find_system_by_name(self, name: str) -> SystemRef | None: ...

    def find_tier_by_name(self, system_id: UUID, name: str) -> TierRef | None: ...

    def find_instance_by_name(self, system_id: UUID, name: str) -> InstanceRef | None: ...

    def find_tiers_named(self, name: str) -> list[TierRef]: ...

    def find_instances_named(self, name: str) -> list[InstanceRef]: ...

    def get_user(self, user_id: UUID) -> UserRef | None: ...

    def get_system(self, system_id: UUID) -> SystemRef | None: ...

    def get_tier(self, tier_id: UUID) -> TierRef | None: ...

    def get_instance(self, instance_id: UUID) -> InstanceRef | None: ...

    def count_active_grants(self, key: GrantKey) -> int: ...

    def find_active_grant_keys(self, keys: Iterable[GrantKey]) -> set[GrantKey]: ...

    def insert_grants_atomically(
        self,
        drafts: Sequence[GrantDraft],
        *,
        granted_by: UUID,
        granted_at: datetime,
        audit_action: str,
    ) -> list[Any]: ...


def _normalise(text: str) -> str:
    return text.strip().lower()


def _user_ref(user: models.User | None) -> UserRef | None:
    if user is None:
        return None
    return UserRef(id=user.id, name=user.name or "", email=user.email)


def _system_ref(system: models.System | None) -> SystemRef | None:
    if system is None:
        return None
    return SystemRef(id=system.id, name=system.name, description=system.description)


def _tier_ref(tier: models.AccessTier | None) -> TierRef | None:
    if tier is None:
        return None
    return TierRef(id=tier.id, name=tier.name, system_id=tier.system_id)


def _instance_ref(instance: models.Instance | None) -> InstanceRef | None:
    if instance is None:
        return None
    return InstanceRef(id=instance.id, name=instance.name, system_id=instance.system_id)


ACTIVE_TUPLE_INDEX = "uq_access_grants_active_tuple"


def _is_active_tuple_violation(exc: IntegrityError) -> bool:
    """True when the insert collided with an existing active grant tuple."""

    message = str(exc.orig)
    # postgres names the index; sqlite names the indexed columns
    return ACTIVE_TUPLE_INDEX in message or "UNIQUE constraint failed: access_grants." in message


class SqlGrantRepository:
    """SQLAlchemy-backed implementation bound to one request session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("Grant storage %s failed", operation)
            raise RepositoryError(f"Storage failure during {operation}") from exc

    def find_user_by_email(self, email: str) -> UserRef | None:
        with self._guard("user lookup"):
            user = (
                self.db.query(models.User)
                .filter(sa.func.lower(models.User.email) == _normalise(email))
                .first()
            )
        return _user_ref(user)

    def find_system_by_name(self, name: str) -> SystemRef | None:
        with self._guard("system lookup"):
            system = (
                self.db.query(models.System)
                .filter(sa.func.lower(models.System.name) == _normalise(name))
                .first()
            )
        return _system_ref(system)

    def find_tier_by_name(self, system_id: UUID, name: str) -> TierRef | None:
        with self._guard("tier lookup"):
            tier = (
                self.db.query(models.AccessTier)
                .filter(
                    models.AccessTier.system_id == system_id,
                    sa.func.lower(models.AccessTier.name) == _normalise(name),
                )
                .first()
            )
        return _tier_ref(tier)

    def find_instance_by_name(self, system_id: UUID, name: str) -> InstanceRef | None:
        with self._guard("instance lookup"):
            instance = (
                self.db.query(models.Instance)
                .filter(
                    models.Instance.system_id == system_id,
                    sa.func.lower(models.Instance.name) == _normalise(name),
                )
                .first()
            )
        return _instance_ref(instance)

    def find_tiers_named(self, name: str) -> list[TierRef]:
        with self._guard("tier lookup"):
            tiers = (
                self.db.query(models.AccessTier)
                .filter(sa.func.lower(models.AccessTier.name) == _normalise(name))
                .all()
            )
        return [_tier_ref(tier) for tier in tiers]

    def find_instances_named(self, name: str) -> list[InstanceRef]:
        with self._guard("instance lookup"):
            instances = (
                self.db.query(models.Instance)
                .filter(sa.func.lower(models.Instance.name) == _normalise(name))
                .all()
            )
        return [_instance_ref(instance) for instance in instances]

    def get_user(self, user_id: UUID) -> UserRef | None:
        with self._guard("user lookup"):
            return _user_ref(self.db.get(models.User, user_id))

    def get_system(self, system_id: UUID) -> SystemRef | None:
        with self._guard("system lookup"):
            return _system_ref(self.db.get(models.System, system_id))

    def get_tier(self, tier_id: UUID) -> TierRef | None:
        with self._guard("tier lookup"):
            return _tier_ref(self.db.get(models.AccessTier, tier_id))

    def get_instance(self, instance_id: UUID) -> InstanceRef | None:
        with self._guard("instance lookup"):
            return _instance_ref(self.db.get(models.Instance, instance_id))

    def count_active_grants(self, key: GrantKey) -> int:
        with self._guard("duplicate check"):
            return (
                self.db.query(sa.func.count(models.AccessGrant.id))
                .filter(
                    models.AccessGrant.user_id == key.user_id,
                    models.AccessGrant.system_id == key.system_id,
                    models.AccessGrant.tier_id == key.tier_id,
                    models.AccessGrant.instance_scope == models.instance_scope_for(key.instance_id),
                    models.AccessGrant.status == models.GRANT_STATUS_ACTIVE,
                )
                .scalar()
            )

    def find_active_grant_keys(self, keys: Iterable[GrantKey]) -> set[GrantKey]:
        wanted = set(keys)
        if not wanted:
            return set()
        user_ids = {key.user_id for key in wanted}
        system_ids = {key.system_id for key in wanted}
        with self._guard("duplicate check"):
            rows = (
                self.db.query(
                    models.AccessGrant.user_id,
                    models.AccessGrant.system_id,
                    models.AccessGrant.tier_id,
                    models.AccessGrant.instance_id,
                )
                .filter(
                    models.AccessGrant.status == models.GRANT_STATUS_ACTIVE,
                    models.AccessGrant.user_id.in_(list(user_ids)),
                    models.AccessGrant.system_id.in_(list(system_ids)),
                )
                .all()
            )
        found = {GrantKey(*row) for row in rows}
        return found & wanted

    def insert_grants_atomically(
        self,
        drafts: Sequence[GrantDraft],
        *,
        granted_by: UUID,
        granted_at: datetime,
        audit_action: str,
    ) -> list[models.AccessGrant]:
        """Insert every draft in one transaction; nothing is kept on failure."""

        if not drafts:
            return []
        grants: list[models.AccessGrant] = []
        try:
            for draft in drafts:
                grant = models.AccessGrant(
                    user_id=draft.user_id,
                    system_id=draft.system_id,
                    tier_id=draft.tier_id,
                    instance_id=draft.instance_id,
                    instance_scope=models.instance_scope_for(draft.instance_id),
                    status=models.GRANT_STATUS_ACTIVE,
                    granted_by=granted_by,
                    granted_at=granted_at,
                    notes=draft.notes,
                )
                self.db.add(grant)
                grants.append(grant)
            self.db.flush()
            for grant in grants:
                audit.log_action(
                    self.db,
                    granted_by,
                    audit_action,
                    "access_grant",
                    grant.id,
                    {
                        "user_id": str(grant.user_id),
                        "system_id": str(grant.system_id),
                        "tier_id": str(grant.tier_id),
                        "instance_id": str(grant.instance_id) if grant.instance_id else None,
                    },
                )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if not _is_active_tuple_violation(exc):
                logger.exception("Grant insert of %d row(s) violated a reference constraint", len(drafts))
                raise RepositoryError("Storage failure during grant insert") from exc
            logger.warning("Rejected %d grant(s): active grant already exists", len(drafts))
            raise GrantConflict("An active grant for one of these rows was created concurrently") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Grant insert of %d row(s) rolled back", len(drafts))
            raise RepositoryError("Storage failure during grant insert") from exc
        for grant in grants:
            self.db.refresh(grant)
        return grants
