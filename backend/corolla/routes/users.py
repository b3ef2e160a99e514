from typing import Optional

import sqlalchemy as sa
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas, auth

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=schemas.UserOut)
async def read_profile(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@router.get("", response_model=list[schemas.UserOut])
async def search_users(
    search: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    query = db.query(models.User).filter(models.User.is_active.is_(True))
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            sa.or_(
                sa.func.lower(models.User.name).like(pattern),
                sa.func.lower(models.User.email).like(pattern),
            )
        )
    return query.order_by(models.User.email.asc()).limit(limit).all()
