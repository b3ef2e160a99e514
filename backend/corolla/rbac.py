from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from . import models
from .services import systems as systems_service

# purpose: centralize catalog and grant-removal authorization checks
# status: active


def _forbidden(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=403, detail={"error": code, "message": message})


def ensure_admin(user: models.User) -> None:
    if not user.is_admin:
        raise _forbidden("FORBIDDEN", "Only administrators can create systems")


def ensure_can_modify_system(db: Session, user: models.User, system_id: UUID) -> None:
    """Allow platform admins and owners of the system."""

    if user.is_admin:
        return
    if not systems_service.is_system_owner(db, system_id, user.id):
        raise _forbidden("FORBIDDEN", "You do not have permission to modify this system")


def ensure_system_owner(db: Session, user: models.User, system_id: UUID) -> None:
    if user.is_admin:
        return
    if not systems_service.is_system_owner(db, system_id, user.id):
        raise _forbidden(
            "NOT_SYSTEM_OWNER",
            "You do not have permission to modify access grants for this system",
        )
