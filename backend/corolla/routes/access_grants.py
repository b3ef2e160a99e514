from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..rbac import ensure_system_owner
from ..repository import SqlGrantRepository
from ..services import access_grants

# purpose: single-grant create, lookup, listing and removal endpoints
# status: active
# depends_on: corolla.services.access_grants

router = APIRouter(prefix="/api/access-grants", tags=["access-grants"], responses=schemas.ERROR_RESPONSES)

_ERROR_STATUS = {
    access_grants.GrantReferenceNotFound: status.HTTP_400_BAD_REQUEST,
    access_grants.TierSystemMismatch: status.HTTP_400_BAD_REQUEST,
    access_grants.InstanceSystemMismatch: status.HTTP_400_BAD_REQUEST,
    access_grants.DuplicateActiveGrant: status.HTTP_409_CONFLICT,
    access_grants.GrantNotFound: status.HTTP_404_NOT_FOUND,
    access_grants.GrantAlreadyRemoved: status.HTTP_400_BAD_REQUEST,
    access_grants.GrantStorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(exc: access_grants.GrantError) -> HTTPException:
    return HTTPException(
        status_code=_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        detail={"error": exc.code, "message": str(exc)},
    )


@router.get("", response_model=schemas.AccessGrantListOut)
async def list_access_grants(
    user_id: Optional[UUID] = None,
    system_id: Optional[UUID] = None,
    instance_id: Optional[UUID] = None,
    tier_id: Optional[UUID] = None,
    status_filter: Optional[Literal["active", "removed"]] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    filters = schemas.AccessGrantFilters(
        user_id=user_id,
        system_id=system_id,
        instance_id=instance_id,
        tier_id=tier_id,
        status=status_filter,
        search=search,
        limit=limit,
        offset=offset,
    )
    grants, total = access_grants.list_access_grants(db, filters)
    return schemas.AccessGrantListOut(
        data=[schemas.AccessGrantOut.model_validate(grant) for grant in grants],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=schemas.AccessGrantOut, status_code=status.HTTP_201_CREATED)
async def create_access_grant(
    payload: schemas.AccessGrantCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    repo = SqlGrantRepository(db)
    try:
        grant = access_grants.create_access_grant(repo, payload, user.id)
    except access_grants.GrantError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    return access_grants.get_access_grant(db, grant.id)


@router.get("/{grant_id}", response_model=schemas.AccessGrantOut)
async def get_access_grant(
    grant_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return access_grants.get_access_grant(db, grant_id)
    except access_grants.GrantNotFound as exc:
        raise _http_error(exc) from exc


@router.patch("/{grant_id}", response_model=schemas.AccessGrantOut)
async def update_access_grant(
    grant_id: UUID,
    update: schemas.AccessGrantUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        grant = access_grants.get_access_grant(db, grant_id)
        ensure_system_owner(db, user, grant.system_id)
        access_grants.remove_access_grant(db, grant, actor_id=user.id, notes=update.notes)
        db.commit()
    except access_grants.GrantError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    db.refresh(grant)
    return grant
