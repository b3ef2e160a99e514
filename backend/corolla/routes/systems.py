from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..rbac import ensure_admin, ensure_can_modify_system
from ..services import systems as systems_service

router = APIRouter(prefix="/api/systems", tags=["systems"], responses=schemas.ERROR_RESPONSES)

_ERROR_STATUS = {
    systems_service.SystemNotFound: status.HTTP_404_NOT_FOUND,
    systems_service.UserNotFound: status.HTTP_400_BAD_REQUEST,
    systems_service.SystemNameExists: status.HTTP_409_CONFLICT,
    systems_service.TierNameExists: status.HTTP_409_CONFLICT,
    systems_service.InstanceNameExists: status.HTTP_409_CONFLICT,
}


def _http_error(exc: systems_service.CatalogError) -> HTTPException:
    return HTTPException(
        status_code=_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        detail={"error": exc.code, "message": str(exc)},
    )


def _get_system_or_404(db: Session, system_id: UUID) -> models.System:
    try:
        return systems_service.get_system(db, system_id)
    except systems_service.SystemNotFound as exc:
        raise _http_error(exc) from exc


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "CONFLICT", "message": "Catalog entry already exists"},
        ) from exc


@router.get("", response_model=list[schemas.SystemOut])
async def list_systems(
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return systems_service.list_systems(db, search)


@router.post("", response_model=schemas.SystemOut, status_code=status.HTTP_201_CREATED)
async def create_system(
    payload: schemas.SystemCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    ensure_admin(user)
    try:
        system = systems_service.create_system(db, payload)
    except systems_service.CatalogError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    _commit(db)
    db.refresh(system)
    return system


@router.get("/{system_id}", response_model=schemas.SystemDetailOut)
async def get_system(
    system_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _get_system_or_404(db, system_id)


@router.get("/{system_id}/tiers", response_model=list[schemas.TierOut])
async def list_tiers(
    system_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _get_system_or_404(db, system_id).tiers


@router.post("/{system_id}/tiers", response_model=schemas.TierOut, status_code=status.HTTP_201_CREATED)
async def create_tier(
    system_id: UUID,
    payload: schemas.TierCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    system = _get_system_or_404(db, system_id)
    ensure_can_modify_system(db, user, system.id)
    try:
        tier = systems_service.create_tier(db, system, payload)
    except systems_service.CatalogError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    _commit(db)
    db.refresh(tier)
    return tier


@router.get("/{system_id}/instances", response_model=list[schemas.InstanceOut])
async def list_instances(
    system_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _get_system_or_404(db, system_id).instances


@router.post("/{system_id}/instances", response_model=schemas.InstanceOut, status_code=status.HTTP_201_CREATED)
async def create_instance(
    system_id: UUID,
    payload: schemas.InstanceCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    system = _get_system_or_404(db, system_id)
    ensure_can_modify_system(db, user, system.id)
    try:
        instance = systems_service.create_instance(db, system, payload)
    except systems_service.CatalogError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    _commit(db)
    db.refresh(instance)
    return instance


@router.get("/{system_id}/owners", response_model=list[schemas.UserOut])
async def list_owners(
    system_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    system = _get_system_or_404(db, system_id)
    return systems_service.list_owners(db, system)


@router.post("/{system_id}/owners", response_model=list[schemas.UserOut], status_code=status.HTTP_201_CREATED)
async def add_owners(
    system_id: UUID,
    payload: schemas.SystemOwnersAdd,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    system = _get_system_or_404(db, system_id)
    ensure_can_modify_system(db, user, system.id)
    try:
        owners = systems_service.add_owners(db, system, payload.user_ids)
    except systems_service.CatalogError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    _commit(db)
    return owners
