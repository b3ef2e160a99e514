"""Single-grant creation, listing and removal."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, joinedload

from .. import audit, models, notify, schemas
from ..repository import GrantConflict, GrantDraft, GrantKey, GrantRepository, RepositoryError
from .grant_resolution import Resolution
from .grant_validation import (
    DUPLICATE_ACTIVE_GRANT,
    INSTANCE_SYSTEM_MISMATCH,
    TIER_SYSTEM_MISMATCH,
    Violation,
    consistency_violations,
    duplicate_violation,
)

# purpose: create one grant by id under the same invariants as bulk ingestion, and manage grant lifecycle
# status: active
# depends_on: corolla.services.grant_validation, corolla.repository

logger = logging.getLogger(__name__)

SINGLE_AUDIT_ACTION = "create_access_grant"


class GrantError(RuntimeError):
    """Base error for classified grant failures."""

    code = "GRANT_ERROR"


class GrantReferenceNotFound(GrantError):
    code = "NOT_FOUND"


class TierSystemMismatch(GrantError):
    code = TIER_SYSTEM_MISMATCH


class InstanceSystemMismatch(GrantError):
    code = INSTANCE_SYSTEM_MISMATCH


class DuplicateActiveGrant(GrantError):
    code = DUPLICATE_ACTIVE_GRANT


class GrantNotFound(GrantError):
    code = "GRANT_NOT_FOUND"


class GrantAlreadyRemoved(GrantError):
    code = "GRANT_ALREADY_REMOVED"


class GrantStorageError(GrantError):
    code = "STORAGE_UNAVAILABLE"


_VIOLATION_ERRORS: dict[str, type[GrantError]] = {
    TIER_SYSTEM_MISMATCH: TierSystemMismatch,
    INSTANCE_SYSTEM_MISMATCH: InstanceSystemMismatch,
    DUPLICATE_ACTIVE_GRANT: DuplicateActiveGrant,
}


def _raise_violation(violation: Violation) -> None:
    raise _VIOLATION_ERRORS.get(violation.code, GrantError)(violation.message)


def _resolve_by_id(repo: GrantRepository, payload: schemas.AccessGrantCreate) -> Resolution:
    user = repo.get_user(payload.user_id)
    if user is None:
        raise GrantReferenceNotFound(f"User with ID '{payload.user_id}' not found")
    system = repo.get_system(payload.system_id)
    if system is None:
        raise GrantReferenceNotFound(f"System with ID '{payload.system_id}' not found")
    tier = repo.get_tier(payload.tier_id)
    if tier is None:
        raise GrantReferenceNotFound(f"Tier with ID '{payload.tier_id}' not found")
    instance = None
    if payload.instance_id is not None:
        instance = repo.get_instance(payload.instance_id)
        if instance is None:
            raise GrantReferenceNotFound(f"Instance with ID '{payload.instance_id}' not found")
    return Resolution(user=user, system=system, tier=tier, instance=instance)


def create_access_grant(
    repo: GrantRepository,
    payload: schemas.AccessGrantCreate,
    actor_id: UUID,
):
    """Validate and insert one grant, raising on the first violated invariant."""

    try:
        resolution = _resolve_by_id(repo, payload)
        for violation in consistency_violations(resolution):
            _raise_violation(violation)
        key = GrantKey(payload.user_id, payload.system_id, payload.tier_id, payload.instance_id)
        active_keys = {key} if repo.count_active_grants(key) else set()
        duplicate = duplicate_violation(key, active_keys)
        if duplicate:
            _raise_violation(duplicate)
        granted_at = datetime.now(timezone.utc)
        (grant,) = repo.insert_grants_atomically(
            [_draft_from(payload)],
            granted_by=actor_id,
            granted_at=granted_at,
            audit_action=SINGLE_AUDIT_ACTION,
        )
    except GrantConflict as exc:
        raise DuplicateActiveGrant("User already has active access for this tier on this system") from exc
    except RepositoryError as exc:
        raise GrantStorageError("Access grant could not be stored") from exc
    logger.info("Granted tier %s on system %s to user %s", payload.tier_id, payload.system_id, payload.user_id)
    _announce(repo, resolution, payload.notes, actor_id, granted_at)
    return grant


def _draft_from(payload: schemas.AccessGrantCreate) -> GrantDraft:
    return GrantDraft(
        user_id=payload.user_id,
        system_id=payload.system_id,
        tier_id=payload.tier_id,
        instance_id=payload.instance_id,
        notes=payload.notes,
    )


def _announce(
    repo: GrantRepository,
    resolution: Resolution,
    notes: str | None,
    actor_id: UUID,
    granted_at: datetime,
) -> None:
    try:
        grantor = repo.get_user(actor_id)
    except RepositoryError:
        grantor = None
    grantor_info = (
        {"name": grantor.name or grantor.email, "email": grantor.email}
        if grantor
        else {"name": "System Admin", "email": str(actor_id)}
    )
    payload = notify.build_access_granted_payload(
        granted_by=grantor_info,
        granted_to={"name": resolution.user.name or resolution.user.email, "email": resolution.user.email},
        system={"name": resolution.system.name, "description": resolution.system.description},
        access_tier=resolution.tier.name,
        instance=resolution.instance.name if resolution.instance else None,
        notes=notes,
        granted_at=granted_at,
    )
    notify.send_access_granted(payload)


def _grant_query(db: Session):
    return db.query(models.AccessGrant).options(
        joinedload(models.AccessGrant.user),
        joinedload(models.AccessGrant.system),
        joinedload(models.AccessGrant.tier),
        joinedload(models.AccessGrant.instance),
    )


def get_access_grant(db: Session, grant_id: UUID) -> models.AccessGrant:
    grant = _grant_query(db).filter(models.AccessGrant.id == grant_id).first()
    if grant is None:
        raise GrantNotFound(f"Access grant with ID '{grant_id}' not found")
    return grant


def list_access_grants(db: Session, filters: schemas.AccessGrantFilters) -> tuple[list[models.AccessGrant], int]:
    """Return one page of grants, newest first, plus the unpaged total."""

    query = db.query(models.AccessGrant)
    if filters.user_id:
        query = query.filter(models.AccessGrant.user_id == filters.user_id)
    if filters.system_id:
        query = query.filter(models.AccessGrant.system_id == filters.system_id)
    if filters.instance_id:
        query = query.filter(models.AccessGrant.instance_id == filters.instance_id)
    if filters.tier_id:
        query = query.filter(models.AccessGrant.tier_id == filters.tier_id)
    if filters.status:
        query = query.filter(models.AccessGrant.status == filters.status)
    if filters.search:
        pattern = f"%{filters.search.strip().lower()}%"
        query = query.join(models.User, models.AccessGrant.user_id == models.User.id).filter(
            sa.or_(
                sa.func.lower(models.User.name).like(pattern),
                sa.func.lower(models.User.email).like(pattern),
            )
        )
    total = query.count()
    grant_ids = [
        row[0]
        for row in query.with_entities(models.AccessGrant.id)
        .order_by(models.AccessGrant.granted_at.desc(), models.AccessGrant.id)
        .offset(filters.offset)
        .limit(filters.limit)
        .all()
    ]
    if not grant_ids:
        return [], total
    grants = _grant_query(db).filter(models.AccessGrant.id.in_(grant_ids)).all()
    by_id = {grant.id: grant for grant in grants}
    return [by_id[grant_id] for grant_id in grant_ids], total


def remove_access_grant(
    db: Session,
    grant: models.AccessGrant,
    *,
    actor_id: UUID,
    notes: str | None = None,
) -> models.AccessGrant:
    """Mark an active grant removed; removal is terminal."""

    if grant.status == models.GRANT_STATUS_REMOVED:
        raise GrantAlreadyRemoved("This access grant has already been removed")
    grant.status = models.GRANT_STATUS_REMOVED
    grant.removed_at = datetime.now(timezone.utc)
    if notes is not None:
        grant.notes = notes
    db.add(grant)
    audit.log_action(db, actor_id, "remove_access_grant", "access_grant", grant.id)
    return grant
